import os
import subprocess
import time

from installer import log, settings
from installer.errors import CommandError


def run_command(args: list[str]) -> None:
    """Run with output streamed to the console; non-zero exit raises."""
    log.command(args)
    try:
        rc = subprocess.call(args)
    except OSError as e:
        raise CommandError(f"{args[0]}: {e}") from e
    if rc != 0:
        raise CommandError(f"{' '.join(args)}: exit status {rc}")


def settle() -> None:
    time.sleep(settings.SETTLE_S)


def target_path(*parts: str) -> str:
    """Path inside the target root; absolute parts are re-rooted."""
    return os.path.join(settings.TARGET_ROOT, *(p.lstrip("/") for p in parts))


def chroot(*args: str) -> None:
    run_command(["chroot", settings.TARGET_ROOT, *args])
