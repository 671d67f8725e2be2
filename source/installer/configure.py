import os

from installer import log, utils
from installer.errors import InstallerError
from installer.models import CloudInitData

SEED_DIR = "var/lib/cloud/seed/nocloud-net"

BASELINE_DIRS = [
    "boot/efi",
    "dev/pts",
    "etc",
    "proc",
    "run",
    "sys",
    "tmp",
    "var/tmp",
    SEED_DIR,
]


def configure_system(cloud_init: CloudInitData) -> str:
    """Lay down the directory skeleton and the NoCloud seed; returns the seed dir."""
    log.info("Configuring system with cloud-init data...")
    try:
        for d in BASELINE_DIRS:
            os.makedirs(utils.target_path(d), mode=0o755, exist_ok=True)
    except OSError as e:
        raise InstallerError(f"failed to create directory structure: {e}") from e

    seed_dir = utils.target_path(SEED_DIR)
    for name, content in cloud_init.documents().items():
        log.info(f"Writing {name}...")
        path = os.path.join(seed_dir, name)
        try:
            with open(path, "w", encoding="utf-8") as f:
                f.write(content)
            os.chmod(path, 0o644)
        except OSError as e:
            raise InstallerError(f"failed to write {name}: {e}") from e
    log.info("Cloud-init configuration written")
    return seed_dir
