import os
import platform
import shutil
from typing import Optional

from pvmlab import settings
from pvmlab.errors import PreconditionError
from pvmlab.models import Arch, VMPaths, VMRecord

UEFI_CODE_CANDIDATES: dict[Arch, list[str]] = {
    Arch.aarch64: [
        "/usr/share/qemu-efi-aarch64/QEMU_EFI.fd",  # Ubuntu/Debian
        "/usr/share/AAVMF/AAVMF_CODE.fd",
        "/opt/homebrew/share/qemu/edk2-aarch64-code.fd",  # Homebrew
        "/usr/local/share/qemu/edk2-aarch64-code.fd",
    ],
    Arch.x86_64: [
        "/usr/share/OVMF/OVMF_CODE.fd",
        "/usr/share/qemu/OVMF.fd",
        "/usr/share/ovmf/OVMF.fd",
        "/opt/homebrew/share/qemu/edk2-x86_64-code.fd",
    ],
}

SOCKET_VMNET_CLIENT_CANDIDATES = [
    "/opt/homebrew/opt/socket_vmnet/bin/socket_vmnet_client",
]

NET_DEVICE = "virtio-net-pci"


def _first_existing(paths: list[str]) -> Optional[str]:
    """Return the first path that exists from a list of candidates."""
    for p in paths:
        if p and os.path.exists(p):
            return p
    return None


def _has_kvm() -> bool:
    return os.path.exists("/dev/kvm")


def _is_macos() -> bool:
    return platform.system() == "Darwin"


def qemu_binary(arch: Arch) -> str:
    if arch == Arch.aarch64:
        return "qemu-system-aarch64"
    return "qemu-system-x86_64"


def machine_type(arch: Arch) -> str:
    if arch == Arch.aarch64:
        return "virt,gic-version=3"
    return "q35"


def find_uefi_code(arch: Arch) -> str:
    candidates = UEFI_CODE_CANDIDATES[arch]
    found = _first_existing(candidates)
    if found is None:
        raise PreconditionError(
            "could not find UEFI firmware in any of the following locations: "
            + ", ".join(candidates)
        )
    return found


def _copy_once(src: str, dst: str) -> None:
    if os.path.exists(dst):
        return
    os.makedirs(os.path.dirname(dst), exist_ok=True)
    shutil.copyfile(src, dst)
    os.chmod(dst, 0o644)


def prepare_firmware(vm: VMRecord, paths: VMPaths) -> list[str]:
    """
    Resolve UEFI firmware and return its pflash drive arguments.

    aarch64 takes a read-only code image plus a per-VM writable vars copy;
    x86_64 boots from a single per-VM writable copy of the OVMF image.
    """
    code = find_uefi_code(vm.arch)
    if vm.arch == Arch.aarch64:
        template = settings.UEFI_VARS_TEMPLATE
        if not os.path.exists(paths.uefi_vars) and not os.path.exists(template):
            raise PreconditionError(f"UEFI vars template not found at {template}")
        _copy_once(template, paths.uefi_vars)
        return [
            "-drive",
            f"if=pflash,format=raw,readonly=on,file={code}",
            "-drive",
            f"if=pflash,format=raw,file={paths.uefi_vars}",
        ]

    _copy_once(code, paths.uefi_code)
    return ["-drive", f"if=pflash,format=raw,file={paths.uefi_code}"]


def _default_accel() -> str:
    if settings.QEMU_ACCEL:
        return settings.QEMU_ACCEL
    if _is_macos():
        return "hvf"
    if _has_kvm():
        return "kvm"
    return "tcg"


def accel_args(arch: Arch) -> list[str]:
    """CPU model and accelerator. CI runners get plain emulation."""
    if settings.IN_CI:
        print("[qemu] CI detected, hardware acceleration disabled")
        if arch == Arch.aarch64:
            return ["-cpu", "max", "-accel", "tcg"]
        return ["-cpu", "max"]

    if arch == Arch.aarch64:
        accel = _default_accel()
        cpu = "max" if accel == "tcg" else "host"
        return ["-cpu", cpu, "-accel", accel]

    # x86_64
    if settings.QEMU_ACCEL:
        accel = settings.QEMU_ACCEL
    elif _has_kvm():
        accel = "kvm"
    elif _is_macos():
        accel = "hvf"
    else:
        return ["-cpu", "max"]
    cpu = "max" if accel == "tcg" else "host"
    return ["-cpu", cpu, "-accel", accel]


def _provisioner_net_args(vm: VMRecord, paths: VMPaths) -> list[str]:
    docker_images = vm.docker_images_path or paths.docker_images_dir
    vms = vm.vms_path or paths.vms_dir
    args: list[str] = []
    args += [
        "-m",
        "4096",
        "-device",
        f"{NET_DEVICE},netdev=net0",
        "-netdev",
        f"user,id=net0,hostfwd=tcp::{vm.ssh_port}-:22,ipv6=on,ipv4=on,ipv6-net=fd00::/64",
        "-device",
        f"{NET_DEVICE},netdev=net1,mac={vm.mac}",
        "-netdev",
        "socket,id=net1,fd=3",
        "-virtfs",
        f"local,path={docker_images},mount_tag=host_share_docker_images,security_model=passthrough",
        "-virtfs",
        f"local,path={vms},mount_tag=host_share_vms,security_model=passthrough",
        "-virtfs",
        f"local,path={paths.images_dir},mount_tag=host_share_images,security_model=passthrough",
    ]
    return args


def _target_net_args(vm: VMRecord) -> list[str]:
    return [
        "-m",
        "2048",
        "-device",
        f"{NET_DEVICE},netdev=net0,mac={vm.mac}",
        "-netdev",
        "socket,id=net0,fd=3",
    ]


def effective_pxeboot(vm: VMRecord, boot: Optional[str]) -> bool:
    if boot is None or boot == "":
        return vm.pxeboot
    if boot == "pxe":
        return True
    if boot == "disk":
        return False
    raise PreconditionError(f"invalid --boot value: {boot}. Must be 'disk' or 'pxe'")


def build_qemu_args(
    vm: VMRecord,
    paths: VMPaths,
    firmware_args: list[str],
    boot: Optional[str] = None,
) -> list[str]:
    """
    Argument vector for a daemonized QEMU, fully determined by the record,
    its paths and the firmware drives. The provisioner's ssh_port must
    already be allocated.
    """
    args: list[str] = [
        qemu_binary(vm.arch),
        "-M",
        machine_type(vm.arch),
        "-smp",
        "2",
    ]
    args += firmware_args
    args += [
        "-drive",
        f"file={paths.disk},format=qcow2,if=virtio",
        "-pidfile",
        paths.pidfile,
        "-monitor",
        f"unix:{paths.monitor},server,nowait",
    ]

    # Only VMs created from an image carry a cloud-init ISO
    if not vm.pxeboot:
        args += ["-drive", f"file={paths.iso},format=raw,if=virtio"]
    if effective_pxeboot(vm, boot):
        args += ["-boot", "menu=on"]

    args += ["-display", "none", "-daemonize", "-serial", f"file:{paths.log}"]

    if vm.is_provisioner:
        args += _provisioner_net_args(vm, paths)
    else:
        args += _target_net_args(vm)

    args += accel_args(vm.arch)
    return args


def socket_vmnet_client() -> str:
    if settings.SOCKET_VMNET_CLIENT:
        return settings.SOCKET_VMNET_CLIENT
    found = _first_existing(SOCKET_VMNET_CLIENT_CANDIDATES)
    if found:
        return found
    found = shutil.which("socket_vmnet_client")
    if found:
        return found
    raise PreconditionError(
        "socket_vmnet_client not found in standard paths or via PATH. Please install it"
    )


def launch_command(qemu_args: list[str]) -> list[str]:
    """QEMU wrapped by socket_vmnet_client, which hands it the vmnet socket as fd 3."""
    return [socket_vmnet_client(), settings.SOCKET_VMNET_PATH] + qemu_args
