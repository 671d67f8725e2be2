import os
from dotenv import load_dotenv

_ = load_dotenv()

APP_DIR: str = os.environ.get("PVMLAB_HOME", os.path.expanduser("~/.pvmlab"))

# Empty means "pick the best accelerator for this host"
QEMU_ACCEL: str = os.environ.get("PVMLAB_QEMU_ACCEL", "")

SOCKET_VMNET_PATH: str = os.environ.get(
    "PVMLAB_SOCKET_VMNET_PATH", "/var/run/vmlab.socket_vmnet"
)
SOCKET_VMNET_CLIENT: str = os.environ.get("PVMLAB_SOCKET_VMNET_CLIENT", "")

UEFI_VARS_TEMPLATE: str = os.environ.get(
    "PVMLAB_UEFI_VARS_TEMPLATE", "/opt/homebrew/share/qemu/edk2-arm-vars.fd"
)

WAIT_TIMEOUT_S: int = int(os.environ.get("PVMLAB_WAIT_TIMEOUT", "300"))

IN_CI: bool = (
    os.environ.get("CI", "").lower() == "true"
    or os.environ.get("GITHUB_ACTIONS", "").lower() == "true"
)

VM_SSH_USER = "ubuntu"

# Seconds to let a daemonized QEMU write its pidfile before re-probing
START_GRACE_S: float = float(os.environ.get("PVMLAB_START_GRACE_S", "1.0"))

# psutil reports 0.0 on the first cpu_percent call of a process
CPU_SAMPLE_S: float = float(os.environ.get("PVMLAB_CPU_SAMPLE_S", "0.2"))
