import os
import posixpath
import shlex

from installer import log, settings, utils
from installer.errors import CommandError, InstallerError
from installer.models import InstallerConfig


def install_os(config: InstallerConfig) -> str:
    """Stream the rootfs tarball into the target root, then drop the kernel into /boot."""
    log.info(f"Downloading rootfs from {config.rootfs_url}")
    pipeline = (
        f"wget -O - {shlex.quote(config.rootfs_url)} "
        f"| tar -xz -C {shlex.quote(settings.TARGET_ROOT)}"
    )
    try:
        utils.run_command(["sh", "-c", pipeline])
    except CommandError as e:
        raise InstallerError(f"failed to download and extract rootfs: {e}") from e
    log.info("Rootfs extracted successfully.")

    kernel = utils.target_path("boot", posixpath.basename(config.kernel_url))
    log.info(f"Installing kernel {config.kernel_url} -> {kernel}")
    os.makedirs(os.path.dirname(kernel), exist_ok=True)
    try:
        utils.run_command(["wget", "-O", kernel, config.kernel_url])
    except CommandError as e:
        raise InstallerError(f"failed to download kernel: {e}") from e
    try:
        os.chmod(kernel, 0o644)
    except OSError as e:
        raise InstallerError(f"failed to set permissions on kernel: {e}") from e
    log.info("Kernel installed successfully.")
    return kernel
