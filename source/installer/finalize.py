import os
from dataclasses import dataclass, field
from typing import Optional

from installer import log, settings, utils
from installer.errors import CommandError, InstallerError

# Host paths bind-mounted into the target for the chroot steps, in mount order
PSEUDO_FS = ["/proc", "/sys", "/dev", "/dev/pts", "/sys/firmware/efi/efivars"]

GRUB_TARGETS = {"x86_64": "x86_64-efi", "aarch64": "aarch64-efi"}

FSTAB = """# /etc/fstab: static file system information.
#
# Use 'blkid' to print the universally unique identifier for a
# device; this may be used with UUID= as a more robust way to name devices
# that works even if disks are added and removed. See fstab(5).
#
# <file system> <mount point>   <type>  <options>       <dump>  <pass>
LABEL=cloudimg-rootfs    /               ext4    errors=remount-ro 0       1
LABEL=UEFI      /boot/efi       vfat    umask=0077        0       1"""

# Installer-only kernel parameters that must not reach the installed system
_INSTALLER_ARGS = ("initrd.mode=", "config_url=", "installer_mac=", "vmlinuz-")


@dataclass
class BootloaderPlan:
    bootloader_id: str
    grub_install: str
    grub_config: str
    packages: list[str]
    package_manager: list[str]
    refresh: list[list[str]] = field(default_factory=list)


def bootloader_plan(distro: str, arch: str) -> BootloaderPlan:
    if distro.startswith("ubuntu"):
        return BootloaderPlan(
            bootloader_id="ubuntu",
            grub_install="grub-install",
            grub_config="update-grub",
            packages=["grub-efi-amd64" if arch == "x86_64" else "grub-efi-arm64"],
            package_manager=["apt-get", "install", "-y"],
            refresh=[["apt-get", "update"]],
        )
    if distro.startswith("fedora"):
        return BootloaderPlan(
            bootloader_id="fedora",
            grub_install="grub2-install",
            grub_config="grub2-mkconfig -o /boot/grub2/grub.cfg",
            packages=[
                "grub2-efi-x64" if arch == "x86_64" else "grub2-efi-aa64",
                "dracut-config-generic",
            ],
            package_manager=["dnf", "install", "-y"],
        )
    raise InstallerError(f"unsupported distro for grub config generation: {distro}")


def _chroot(*args: str, what: str) -> None:
    try:
        utils.chroot(*args)
    except CommandError as e:
        raise InstallerError(f"{what} failed: {e}") from e


def mount_pseudo_filesystems() -> list[str]:
    log.info("Mounting pseudo-filesystems for chroot...")
    os.makedirs(utils.target_path("dev", "pts"), exist_ok=True)
    mounted = []
    for src in PSEUDO_FS:
        dst = utils.target_path(src)
        try:
            utils.run_command(["mount", "--bind", src, dst])
        except CommandError as e:
            raise InstallerError(f"failed to mount {src}: {e}") from e
        mounted.append(dst)
    return mounted


def copy_resolv_conf() -> None:
    """The target's resolv.conf is often a dangling systemd symlink; replace it."""
    log.info("Configuring DNS for chroot...")
    try:
        with open(settings.RESOLV_CONF, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        log.warn(f"Could not read {settings.RESOLV_CONF}: {e}. Creating a default one.")
        content = settings.FALLBACK_RESOLV_CONF

    dst = utils.target_path("etc", "resolv.conf")
    try:
        if os.path.islink(dst):
            log.info("Removing existing resolv.conf symlink...")
            os.remove(dst)
        os.makedirs(os.path.dirname(dst), exist_ok=True)
        with open(dst, "w", encoding="utf-8") as f:
            f.write(content)
    except OSError as e:
        raise InstallerError(f"failed to write resolv.conf into the target: {e}") from e


def write_fstab() -> None:
    log.info("Generating a sane /etc/fstab...")
    try:
        with open(utils.target_path("etc", "fstab"), "w", encoding="utf-8") as f:
            f.write(FSTAB)
    except OSError as e:
        raise InstallerError(f"failed to write fstab: {e}") from e


def find_kernel_version(modules_dir: Optional[str] = None) -> str:
    """First lib/modules entry that holds a modules.dep."""
    base = modules_dir or utils.target_path("lib", "modules")
    try:
        entries = sorted(os.listdir(base))
    except OSError as e:
        raise InstallerError(f"could not read {base}: {e}") from e
    for name in entries:
        if os.path.isfile(os.path.join(base, name, "modules.dep")):
            return name
    raise InstallerError(f"no kernel version directory found in {base}")


def installed_cmdline(cmdline: str) -> str:
    args = [a for a in cmdline.split() if not a.startswith(_INSTALLER_ARGS)]
    args.append("selinux=0")
    return " ".join(args)


def rewrite_grub_default(cmdline: str) -> None:
    path = utils.target_path("etc", "default", "grub")
    line = f'GRUB_CMDLINE_LINUX_DEFAULT="{cmdline}"'
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.read().split("\n")
    except OSError as e:
        log.warn(f"failed to read /etc/default/grub: {e}")
        return
    replaced = False
    for i, existing in enumerate(lines):
        if existing.startswith("GRUB_CMDLINE_LINUX_DEFAULT="):
            lines[i] = line
            replaced = True
    if not replaced:
        lines.append(line)
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write("\n".join(lines))
    except OSError as e:
        log.warn(f"failed to write /etc/default/grub: {e}")


def _fedora_initramfs() -> None:
    kver = find_kernel_version()
    log.info(f"Found kernel version {kver} for initramfs generation")
    _chroot("dracut", "--force", kver, what="dracut")

    try:
        with open(settings.CMDLINE_PATH, "r", encoding="utf-8") as f:
            cmdline = f.read()
    except OSError as e:
        raise InstallerError(f"failed to read {settings.CMDLINE_PATH}: {e}") from e
    log.info("Updating GRUB_CMDLINE_LINUX_DEFAULT in /etc/default/grub...")
    rewrite_grub_default(installed_cmdline(cmdline))

    best_effort = [
        ["mkdir", "-p", "/var/lib/chrony"],
        ["ln", "-sf", f"boot/vmlinuz-{kver}", f"vmlinuz-{kver}"],
        ["ln", "-sf", f"boot/initramfs-{kver}.img", f"initramfs-{kver}.img"],
    ]
    for args in best_effort:
        try:
            utils.chroot(*args)
        except CommandError as e:
            log.warn(str(e))


def unmount_all(mounted: list[str]) -> None:
    """Reverse order; failures are only reported."""
    log.info("Unmounting filesystems...")
    for path in list(reversed(mounted)) + [
        utils.target_path("boot", "efi"),
        settings.TARGET_ROOT,
    ]:
        try:
            utils.run_command(["umount", path])
        except CommandError as e:
            log.warn(f"failed to unmount {path}: {e}")


def reboot() -> None:
    try:
        utils.run_command(["reboot", "-f"])
    except CommandError:
        log.info("reboot command failed, trying sysrq trigger...")
        try:
            with open(settings.SYSRQ_TRIGGER, "w", encoding="utf-8") as f:
                f.write("b")
        except OSError as e:
            log.warn(f"sysrq reboot failed: {e}")


def finalize(distro: str, arch: str, reboot_on_success: bool) -> bool:
    """
    Make the target bootable: chroot in, install GRUB and an initramfs.
    Returns True when a reboot was requested.
    """
    log.info("Finalizing installation...")
    grub_target = GRUB_TARGETS.get(arch)
    if grub_target is None:
        raise InstallerError(f"unsupported architecture for GRUB installation: {arch}")
    plan = bootloader_plan(distro, arch)

    mounted = mount_pseudo_filesystems()
    copy_resolv_conf()

    for args in plan.refresh:
        log.info("Updating package lists...")
        _chroot(*args, what=" ".join(args))

    write_fstab()

    log.info(f"Installing required packages ({' '.join(plan.packages)}) inside chroot...")
    _chroot(*plan.package_manager, *plan.packages, what="package install")

    os.makedirs(utils.target_path("var", "tmp"), exist_ok=True)

    log.info("Installing GRUB bootloader...")
    _chroot(
        plan.grub_install,
        f"--target={grub_target}",
        f"--bootloader-id={plan.bootloader_id}",
        "--efi-directory=/boot/efi",
        "--recheck",
        "--force",
        what="grub-install",
    )

    log.info("Generating initramfs...")
    if plan.bootloader_id == "ubuntu":
        _chroot("update-initramfs", "-c", "-k", "all", what="update-initramfs")
    else:
        _fedora_initramfs()

    log.info("Generating GRUB config...")
    _chroot("sh", "-c", plan.grub_config, what="grub config generation")

    if reboot_on_success:
        unmount_all(mounted)
    log.info("Finalization complete.")
    return reboot_on_success
