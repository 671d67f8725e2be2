import os

import pytest

import pvmlab.qemu_manager.qemu_args as qemu_args
from pvmlab.errors import PreconditionError
from pvmlab.models import Arch, Role, VMPaths, VMRecord


def _host(monkeypatch, macos=False, kvm=False):
    monkeypatch.setattr(qemu_args, "_is_macos", lambda: macos)
    monkeypatch.setattr(qemu_args, "_has_kvm", lambda: kvm)


def _after(args, flag):
    return [args[i + 1] for i, a in enumerate(args) if a == flag]


FIRMWARE = ["-drive", "if=pflash,format=raw,file=/fw.fd"]


def test_target_aarch64_exact_vector(monkeypatch, record_factory):
    _host(monkeypatch, macos=True)
    vm = record_factory("client1")
    paths = VMPaths.for_vm("client1", "/lab")

    args = qemu_args.build_qemu_args(vm, paths, FIRMWARE)

    assert args == [
        "qemu-system-aarch64",
        "-M",
        "virt,gic-version=3",
        "-smp",
        "2",
        "-drive",
        "if=pflash,format=raw,file=/fw.fd",
        "-drive",
        "file=/lab/vms/client1.qcow2,format=qcow2,if=virtio",
        "-pidfile",
        "/lab/pids/client1.pid",
        "-monitor",
        "unix:/lab/monitors/client1.sock,server,nowait",
        "-drive",
        "file=/lab/configs/cloud-init/client1.iso,format=raw,if=virtio",
        "-display",
        "none",
        "-daemonize",
        "-serial",
        "file:/lab/logs/client1.log",
        "-m",
        "2048",
        "-device",
        "virtio-net-pci,netdev=net0,mac=52:54:00:12:34:56",
        "-netdev",
        "socket,id=net0,fd=3",
        "-cpu",
        "host",
        "-accel",
        "hvf",
    ]


def test_same_inputs_same_vector(monkeypatch, record_factory):
    _host(monkeypatch, kvm=True)
    vm = record_factory("c", arch=Arch.x86_64)
    paths = VMPaths.for_vm("c", "/lab")
    assert qemu_args.build_qemu_args(vm, paths, FIRMWARE) == qemu_args.build_qemu_args(
        vm, paths, FIRMWARE
    )


def test_provisioner_forwards_ssh_and_shares_dirs(monkeypatch, record_factory):
    _host(monkeypatch, kvm=True)
    vm = record_factory(
        "prov", role=Role.provisioner, arch=Arch.x86_64, ssh_port=40022
    )
    paths = VMPaths.for_vm("prov", "/lab")

    args = qemu_args.build_qemu_args(vm, paths, FIRMWARE)

    assert _after(args, "-m") == ["4096"]
    netdevs = _after(args, "-netdev")
    assert netdevs[0] == (
        "user,id=net0,hostfwd=tcp::40022-:22,ipv6=on,ipv4=on,ipv6-net=fd00::/64"
    )
    assert netdevs[1] == "socket,id=net1,fd=3"
    assert "virtio-net-pci,netdev=net1,mac=52:54:00:12:34:56" in _after(args, "-device")
    assert _after(args, "-virtfs") == [
        "local,path=/lab/docker_images,mount_tag=host_share_docker_images,security_model=passthrough",
        "local,path=/lab/vms,mount_tag=host_share_vms,security_model=passthrough",
        "local,path=/lab/images,mount_tag=host_share_images,security_model=passthrough",
    ]
    assert args[-4:] == ["-cpu", "host", "-accel", "kvm"]


def test_provisioner_custom_share_paths(monkeypatch, record_factory):
    _host(monkeypatch)
    vm = record_factory(
        "prov",
        role=Role.provisioner,
        ssh_port=1,
        docker_images_path="/d",
        vms_path="/v",
    )
    args = qemu_args.build_qemu_args(vm, VMPaths.for_vm("prov", "/lab"), FIRMWARE)
    shares = _after(args, "-virtfs")
    assert shares[0].startswith("local,path=/d,")
    assert shares[1].startswith("local,path=/v,")


def test_pxeboot_record_has_no_iso_and_boots_menu(monkeypatch, record_factory):
    _host(monkeypatch)
    vm = record_factory("c", pxeboot=True)
    args = qemu_args.build_qemu_args(vm, VMPaths.for_vm("c", "/lab"), FIRMWARE)
    assert not any(a.endswith(".iso,format=raw,if=virtio") for a in args)
    assert _after(args, "-boot") == ["menu=on"]


def test_boot_override(monkeypatch, record_factory):
    _host(monkeypatch)
    paths = VMPaths.for_vm("c", "/lab")

    disk_vm = record_factory("c")
    assert _after(qemu_args.build_qemu_args(disk_vm, paths, FIRMWARE, "pxe"), "-boot") == [
        "menu=on"
    ]
    pxe_vm = record_factory("c", pxeboot=True)
    assert "-boot" not in qemu_args.build_qemu_args(pxe_vm, paths, FIRMWARE, "disk")

    with pytest.raises(PreconditionError):
        qemu_args.build_qemu_args(disk_vm, paths, FIRMWARE, "cdrom")


@pytest.mark.parametrize(
    "arch,expected",
    [
        (Arch.aarch64, ["-cpu", "max", "-accel", "tcg"]),
        (Arch.x86_64, ["-cpu", "max"]),
    ],
)
def test_ci_disables_acceleration(monkeypatch, arch, expected):
    _host(monkeypatch, macos=True, kvm=True)
    monkeypatch.setattr(qemu_args.settings, "IN_CI", True)
    assert qemu_args.accel_args(arch) == expected


def test_accel_override(monkeypatch):
    _host(monkeypatch, macos=True)
    monkeypatch.setattr(qemu_args.settings, "QEMU_ACCEL", "tcg")
    assert qemu_args.accel_args(Arch.aarch64) == ["-cpu", "max", "-accel", "tcg"]


def test_x86_without_acceleration(monkeypatch):
    _host(monkeypatch)
    assert qemu_args.accel_args(Arch.x86_64) == ["-cpu", "max"]
    assert qemu_args.accel_args(Arch.aarch64) == ["-cpu", "max", "-accel", "tcg"]


# ---- firmware ----
def test_aarch64_firmware_copies_vars_once(monkeypatch, tmp_path, touch_file):
    code = touch_file(str(tmp_path / "code.fd"), "CODE")
    template = touch_file(str(tmp_path / "vars.fd"), "VARS")
    monkeypatch.setitem(qemu_args.UEFI_CODE_CANDIDATES, Arch.aarch64, [code])
    monkeypatch.setattr(qemu_args.settings, "UEFI_VARS_TEMPLATE", template)
    paths = VMPaths.for_vm("c", str(tmp_path / "lab"))

    vm = VMRecord(name="c", role=Role.target, arch=Arch.aarch64)
    drives = qemu_args.prepare_firmware(vm, paths)

    assert drives == [
        "-drive",
        f"if=pflash,format=raw,readonly=on,file={code}",
        "-drive",
        f"if=pflash,format=raw,file={paths.uefi_vars}",
    ]
    with open(paths.uefi_vars, encoding="utf-8") as f:
        assert f.read() == "VARS"

    # NVRAM written by the guest survives the next start
    with open(paths.uefi_vars, "w", encoding="utf-8") as f:
        f.write("BOOTORDER")
    qemu_args.prepare_firmware(vm, paths)
    with open(paths.uefi_vars, encoding="utf-8") as f:
        assert f.read() == "BOOTORDER"


def test_x86_firmware_uses_writable_copy(monkeypatch, tmp_path, touch_file):
    code = touch_file(str(tmp_path / "OVMF.fd"), "OVMF")
    monkeypatch.setitem(qemu_args.UEFI_CODE_CANDIDATES, Arch.x86_64, [code])
    paths = VMPaths.for_vm("c", str(tmp_path / "lab"))

    vm = VMRecord(name="c", role=Role.target, arch=Arch.x86_64)
    assert qemu_args.prepare_firmware(vm, paths) == [
        "-drive",
        f"if=pflash,format=raw,file={paths.uefi_code}",
    ]
    assert os.path.exists(paths.uefi_code)


def test_missing_firmware_lists_searched_paths(monkeypatch):
    monkeypatch.setitem(qemu_args.UEFI_CODE_CANDIDATES, Arch.x86_64, ["/no/a", "/no/b"])
    with pytest.raises(PreconditionError) as e:
        qemu_args.find_uefi_code(Arch.x86_64)
    assert "/no/a, /no/b" in str(e.value)


def test_launch_command_wraps_with_socket_vmnet():
    assert qemu_args.launch_command(["qemu"]) == [
        "/opt/vmnet/client",
        "/var/run/test.vmnet",
        "qemu",
    ]
