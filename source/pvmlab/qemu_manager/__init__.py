"""Public API re-exports.

Hypervisor-facing helpers: ports, pids, argv, firmware, shutdown and waiters.
"""

from .ports import find_random_port
from .crypto import ensure_ssh_key, load_pkey
from .seed import make_blank_disk, make_overlay, make_seed_iso
from .ssh import ssh_args, ssh_destination, proxy_command
from .ssh_ready import wait_for_port, wait_for_message, wait_for_cloud_init
from .qemu_args import build_qemu_args, prepare_firmware, launch_command
from .session import Shutdown, ShutdownPolicy, ShutdownState
from .vm import pid_alive, is_running, run_command

__all__ = [
    "find_random_port",
    "ensure_ssh_key",
    "load_pkey",
    "make_blank_disk",
    "make_overlay",
    "make_seed_iso",
    "ssh_args",
    "ssh_destination",
    "proxy_command",
    "wait_for_port",
    "wait_for_message",
    "wait_for_cloud_init",
    "build_qemu_args",
    "prepare_firmware",
    "launch_command",
    "Shutdown",
    "ShutdownPolicy",
    "ShutdownState",
    "pid_alive",
    "is_running",
    "run_command",
]
