import errno
import os
import subprocess
from typing import Callable, Optional

from pvmlab.models import CommandResult


def pid_alive(pid: int) -> bool:
    """Null-signal probe: the process exists, even if it belongs to someone else."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
        return True
    except OSError as e:
        return e.errno != errno.ESRCH


def read_pid(pidfile: str) -> Optional[int]:
    """
    PID stored in a QEMU pidfile.
    Returns None when the file does not exist; raises ValueError when it
    holds something that is not a positive integer.
    """
    try:
        with open(pidfile, "r", encoding="utf-8") as f:
            raw = f.read().strip()
    except FileNotFoundError:
        return None
    pid = int(raw)
    if pid <= 0:
        raise ValueError(f"invalid PID in pidfile: {raw}")
    return pid


def is_running(
    pidfile: str, is_alive: Callable[[int], bool] = pid_alive
) -> tuple[bool, Optional[int]]:
    try:
        pid = read_pid(pidfile)
    except (OSError, ValueError) as e:
        print("[vm] unreadable pidfile", pidfile, e)
        return False, None
    if pid is None:
        return False, None
    return is_alive(pid), pid


def clear_stale_pidfile(
    pidfile: str, is_alive: Callable[[int], bool] = pid_alive
) -> None:
    if not os.path.exists(pidfile):
        return
    running, _ = is_running(pidfile, is_alive)
    if running:
        return
    try:
        os.remove(pidfile)
        print(f"[vm] removed stale pidfile: {pidfile}")
    except OSError as e:
        print("[vm] warning: error removing stale pidfile", e)


def remove_quietly(path: str) -> None:
    """Remove a file; absence is fine, anything else is only a warning."""
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        print(f"[vm] warning: could not remove {path}: {e}")


def run_command(args: list[str]) -> CommandResult:
    """Run to completion with stdout and stderr merged."""
    print("[vm] running:", " ".join(args))
    try:
        proc = subprocess.run(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            check=False,
        )
    except FileNotFoundError as e:
        return CommandResult(returncode=127, output=str(e))
    return CommandResult(
        returncode=proc.returncode,
        output=proc.stdout.decode(errors="ignore") if proc.stdout else "",
    )
