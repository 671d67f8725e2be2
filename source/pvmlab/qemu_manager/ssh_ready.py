import os
import socket
import time
from typing import Callable, Optional

import paramiko

from pvmlab import settings
from pvmlab.errors import WaitTimeoutError

from .crypto import load_pkey
from .ssh import proxy_command

CLOUD_INIT_QUERY = "systemctl show cloud-init.target --property ActiveState"
CLOUD_INIT_READY = "ActiveState=active"
SSH_ATTEMPT_TIMEOUT_S = 10.0


def wait_for_port(
    host: str,
    port: int,
    timeout: float,
    connect_timeout: float = 1.0,
    interval: float = 0.2,
) -> None:
    """Poll a TCP port until it accepts a connection."""
    address = f"{host}:{port}"
    print(f"[wait] waiting for port {address} to become available...")
    deadline = time.monotonic() + timeout

    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise WaitTimeoutError(f"timed out waiting for port {address}")
        try:
            with socket.create_connection(
                (host, port), timeout=min(connect_timeout, remaining)
            ):
                pass
            print(f"[wait] port {address} is now available")
            return
        except OSError:
            time.sleep(min(interval, max(deadline - time.monotonic(), 0)))


class LogFollower:
    """
    Incremental reader with `tail -F` behaviour: starts at the current end,
    and starts over from the top when the file is recreated or truncated.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._fh = None
        self._ino: Optional[int] = None
        self._buf = b""
        self._seek_end = True

    def _open(self) -> bool:
        try:
            fh = open(self.path, "rb")
        except FileNotFoundError:
            # a file that shows up later is read from its first byte
            self._seek_end = False
            return False
        if self._seek_end:
            fh.seek(0, os.SEEK_END)
        self._fh = fh
        self._ino = os.fstat(fh.fileno()).st_ino
        self._buf = b""
        return True

    def _replaced(self) -> bool:
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            return False
        if st.st_ino != self._ino:
            return True
        return st.st_size < self._fh.tell()

    def read_lines(self) -> list[str]:
        if self._fh is None:
            if not self._open():
                return []
        elif self._replaced():
            self.close()
            self._seek_end = False
            if not self._open():
                return []

        chunk = self._fh.read()
        if not chunk:
            return []
        self._buf += chunk
        *lines, self._buf = self._buf.split(b"\n")
        return [line.decode(errors="replace") for line in lines]

    @property
    def pending(self) -> str:
        """Trailing text not yet terminated by a newline (e.g. a login prompt)."""
        return self._buf.decode(errors="replace")

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
        self._fh = None


def wait_for_message(
    log_path: str, message: str, timeout: float, poll_interval: float = 0.2
) -> None:
    """Follow a log file until a line contains `message` (case-insensitive)."""
    print(f"[wait] waiting for message '{message}' in {log_path}...")
    needle = message.lower()
    deadline = time.monotonic() + timeout
    follower = LogFollower(log_path)
    try:
        while time.monotonic() < deadline:
            for line in follower.read_lines():
                if needle in line.strip().lower():
                    print(f"[wait] found message '{message}' in log file")
                    return
            if needle in follower.pending.lower():
                print(f"[wait] found message '{message}' in log file")
                return
            time.sleep(poll_interval)
    finally:
        follower.close()
    raise WaitTimeoutError(f"timed out waiting for message '{message}' in log file")


def remote_query(
    ssh_port: int,
    key_path: str,
    command: str,
    target_ip: str = "",
    timeout: float = SSH_ATTEMPT_TIMEOUT_S,
) -> str:
    """
    Run one command over SSH and return its stdout.
    With target_ip the connection is tunnelled through the provisioner.
    """
    pkey = load_pkey(key_path)
    cli = paramiko.SSHClient()
    cli.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    host, port, sock = "127.0.0.1", ssh_port, None
    if target_ip:
        cmd = proxy_command(ssh_port, key_path)
        sock = paramiko.ProxyCommand(cmd.replace("%h", target_ip).replace("%p", "22"))
        host, port = target_ip, 22

    try:
        cli.connect(
            host,
            port=port,
            username=settings.VM_SSH_USER,
            pkey=pkey,
            sock=sock,
            timeout=timeout,
            banner_timeout=timeout,
            auth_timeout=timeout,
            look_for_keys=False,
            allow_agent=False,
        )
        _, stdout, _ = cli.exec_command(command, timeout=timeout)
        return stdout.read().decode(errors="ignore")
    finally:
        cli.close()


def wait_for_cloud_init(
    ssh_port: int,
    key_path: str,
    timeout: float,
    target_ip: str = "",
    interval: float = 2.0,
    query: Optional[Callable[[], str]] = None,
) -> None:
    """
    Poll cloud-init.target over SSH until it reports active.
    Failed attempts are expected while the guest boots and are not reported.
    """
    via = f"{target_ip} via provisioner" if target_ip else f"port {ssh_port}"
    print(f"[wait] waiting for cloud-init.target to become active ({via})...")
    deadline = time.monotonic() + timeout
    if query is None:

        def query() -> str:
            # one attempt may not outlive the deadline
            attempt = max(min(SSH_ATTEMPT_TIMEOUT_S, deadline - time.monotonic()), 0.1)
            return remote_query(
                ssh_port, key_path, CLOUD_INIT_QUERY, target_ip, timeout=attempt
            )

    while time.monotonic() < deadline:
        try:
            if CLOUD_INIT_READY in query():
                print("[wait] cloud-init completed successfully")
                return
        except (OSError, EOFError, paramiko.SSHException):
            pass
        time.sleep(min(interval, max(deadline - time.monotonic(), 0)))
    raise WaitTimeoutError("timed out waiting for cloud-init.target to become active")
