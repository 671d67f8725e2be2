import os
from typing import Iterable, Optional

from installer import log, settings, utils
from installer.errors import CommandError, InstallerError


def find_disk(candidates: Optional[Iterable[str]] = None) -> str:
    for disk in candidates or settings.DISK_CANDIDATES:
        if os.path.exists(disk):
            return disk
    raise InstallerError("no suitable disk found")


def partition_names(disk: str) -> tuple[str, str]:
    """(efi, root) device nodes; nvme namespaces take a `p` separator."""
    sep = "p" if "nvme" in disk else ""
    return f"{disk}{sep}1", f"{disk}{sep}2"


def _run(args: list[str], what: str) -> None:
    try:
        utils.run_command(args)
    except CommandError as e:
        raise InstallerError(f"failed to {what}: {e}") from e


def prepare_disk() -> str:
    """Wipe, partition (EFI + root), format and mount the first disk found."""
    log.info("Detecting disks...")
    disk = find_disk()
    log.info(f"Found disk: {disk}")

    log.info("Dumping disk information...")
    try:
        utils.run_command(["parted", "-s", disk, "print"])
    except CommandError as e:
        log.warn(f"Failed to print disk info: {e}")

    log.info("Wiping existing partition table...")
    _run(["sgdisk", "--zap-all", disk], "wipe partition table")

    log.info("Partitioning disk...")
    _run(
        ["sgdisk", "-n", "1:1M:+512M", "-t", "1:ef00", "-c", "1:EFI", disk],
        "create EFI partition",
    )
    _run(
        ["sgdisk", "-n", "2:0:0", "-t", "2:8300", "-c", "2:root", disk],
        "create root partition",
    )

    log.info("Waiting for partitions...")
    utils.settle()

    efi, root = partition_names(disk)
    log.info("Formatting partitions...")
    _run(["mkfs.vfat", "-F", "32", "-n", "UEFI", efi], "format EFI partition")
    _run(["mkfs.ext4", "-L", "cloudimg-rootfs", root], "format root partition")

    log.info("Mounting partitions...")
    os.makedirs(settings.TARGET_ROOT, exist_ok=True)
    _run(["mount", "-t", "ext4", root, settings.TARGET_ROOT], "mount root partition")
    efi_mount = utils.target_path("boot", "efi")
    os.makedirs(efi_mount, exist_ok=True)
    _run(["mount", "-t", "vfat", efi, efi_mount], "mount EFI partition")
    log.info("Partitions mounted")
    return disk
