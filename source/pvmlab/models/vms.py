import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pvmlab import settings


class Role(str, Enum):
    provisioner = "provisioner"
    target = "target"


class Arch(str, Enum):
    aarch64 = "aarch64"
    x86_64 = "x86_64"


class VMStatus(str, Enum):
    stopped = "stopped"
    running = "running"


# ===== Dominio/Store =====
@dataclass
class VMRecord:
    """
    Durable identity of one VM. Serialized to <appdir>/vms/<name>.json.
    ssh_port is 0 while the VM is not running.
    """

    name: str
    role: Role
    arch: Arch
    ip: str = ""
    subnet: str = ""
    ipv6: str = ""
    subnetv6: str = ""
    mac: str = ""
    pxe_boot_stack_tar: str = ""
    docker_images_path: str = ""
    vms_path: str = ""
    ssh_port: int = 0
    pxeboot: bool = False
    distro: str = ""
    ssh_key: str = ""
    kernel: str = ""
    initrd: str = ""

    @property
    def is_provisioner(self) -> bool:
        return self.role == Role.provisioner


@dataclass
class VMPaths:
    """Every on-disk artifact that belongs to a VM name."""

    name: str
    app_dir: str
    pidfile: str
    monitor: str
    log: str
    disk: str
    iso: str
    cloud_init_dir: str
    uefi_vars: str
    uefi_code: str
    no_reboot: str

    @staticmethod
    def for_vm(name: str, app_dir: Optional[str] = None) -> "VMPaths":
        base = app_dir or settings.APP_DIR
        return VMPaths(
            name=name,
            app_dir=base,
            pidfile=os.path.join(base, "pids", f"{name}.pid"),
            monitor=os.path.join(base, "monitors", f"{name}.sock"),
            log=os.path.join(base, "logs", f"{name}.log"),
            disk=os.path.join(base, "vms", f"{name}.qcow2"),
            iso=os.path.join(base, "configs", "cloud-init", f"{name}.iso"),
            cloud_init_dir=os.path.join(base, "configs", "cloud-init", name),
            uefi_vars=os.path.join(base, "vms", f"{name}-vars.fd"),
            uefi_code=os.path.join(base, "vms", f"{name}-code.fd"),
            no_reboot=os.path.join(base, "vms", f"{name}.noreboot"),
        )

    @property
    def vms_dir(self) -> str:
        return os.path.join(self.app_dir, "vms")

    @property
    def images_dir(self) -> str:
        return os.path.join(self.app_dir, "images")

    @property
    def docker_images_dir(self) -> str:
        return os.path.join(self.app_dir, "docker_images")

    @property
    def ssh_key(self) -> str:
        return os.path.join(self.app_dir, "ssh", "vm_rsa")


@dataclass
class VMProc:
    """
    Handle to a daemonized QEMU. Only the pidfile and the monitor socket
    outlive the CLI invocation that created it.
    """

    name: str
    pid: int
    pidfile: str
    monitor: str
    console_log: str
    ssh_port: int = 0


@dataclass
class CommandResult:
    returncode: int
    output: str = ""


@dataclass
class VMListing:
    record: VMRecord
    status: VMStatus
    pid: Optional[int] = None
    rss_human: str = "-"
    cpu_percent: Optional[float] = None

    @property
    def cpu_human(self) -> str:
        if self.cpu_percent is None:
            return "-"
        return f"{self.cpu_percent:.1f}%"

    @property
    def ssh_access(self) -> str:
        if self.record.is_provisioner:
            if self.record.ssh_port:
                return f"localhost:{self.record.ssh_port}"
            return "N/A"
        return f"{self.record.ip} (from provisioner)"
