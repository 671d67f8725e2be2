import os
from dotenv import load_dotenv

_ = load_dotenv()

TARGET_ROOT: str = os.environ.get("INSTALLER_TARGET_ROOT", "/mnt/target")
CMDLINE_PATH: str = os.environ.get("INSTALLER_CMDLINE_PATH", "/proc/cmdline")
SYS_CLASS_NET: str = os.environ.get("INSTALLER_SYS_CLASS_NET", "/sys/class/net")
RESOLV_CONF: str = os.environ.get("INSTALLER_RESOLV_CONF", "/etc/resolv.conf")
SYSRQ_TRIGGER: str = "/proc/sysrq-trigger"

# First one that exists is wiped and installed to
DISK_CANDIDATES: list[str] = os.environ.get(
    "INSTALLER_DISKS", "/dev/vda,/dev/sda,/dev/nvme0n1"
).split(",")

DEBUG_SHELL: str = os.environ.get("INSTALLER_DEBUG_SHELL", "/bin/sh")

FETCH_TIMEOUT_S: float = float(os.environ.get("INSTALLER_FETCH_TIMEOUT", "30"))

# Pauses for the kernel to catch up (lease, partition device nodes)
SETTLE_S: float = float(os.environ.get("INSTALLER_SETTLE_S", "2"))

FALLBACK_RESOLV_CONF = "nameserver 8.8.8.8\n"
