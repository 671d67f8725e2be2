import os
from dotenv import load_dotenv

_ = load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Host directory shared into the provisioner with one <name>.json per VM
VMS_DIR: str = os.environ.get("PVMLAB_VMS_DIR", "/mnt/host/vms")

TEMPLATE_PATH: str = os.environ.get(
    "PVMLAB_TEMPLATE_PATH", os.path.join(BASE_DIR, "boot.ipxe.template")
)

HOST: str = os.environ.get("PVMLAB_BOOT_HOST", "0.0.0.0")
PORT: int = int(os.environ.get("PVMLAB_BOOT_PORT", "8080"))
