import os
import signal
import socket
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .vm import pid_alive


class ShutdownState(str, Enum):
    graceful_attempted = "graceful_attempted"
    terminate_sent = "terminate_sent"
    kill_sent = "kill_sent"
    failed = "failed"
    stopped = "stopped"


TERMINAL_STATES = (ShutdownState.stopped, ShutdownState.failed)


@dataclass
class ShutdownPolicy:
    graceful_polls: int = 10
    terminate_polls: int = 5
    interval_s: float = 1.0
    connect_timeout_s: float = 1.0


def send_powerdown(monitor_path: str, timeout: float = 1.0) -> bool:
    """
    Ask QEMU to power the guest down through its monitor socket.
    Returns False when the socket is missing, refuses, or the write fails.
    """
    if not monitor_path or not os.path.exists(monitor_path):
        return False
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as s:
            s.settimeout(timeout)
            s.connect(monitor_path)
            s.sendall(b"system_powerdown\n")
        return True
    except OSError as e:
        print("[vm] graceful path unavailable:", e)
        return False


class Shutdown:
    """
    Escalating stop of one QEMU process.

    (start) -> graceful_attempted -> terminate_sent -> kill_sent -> failed
    Any step that observes the process gone moves to stopped.
    """

    def __init__(
        self,
        pid: int,
        monitor_path: str,
        is_alive: Callable[[int], bool] = pid_alive,
        send_signal: Callable[[int, int], None] = os.kill,
        powerdown: Callable[[str, float], bool] = send_powerdown,
        sleep: Callable[[float], None] = time.sleep,
        policy: Optional[ShutdownPolicy] = None,
    ) -> None:
        self.pid = pid
        self.monitor_path = monitor_path
        self.is_alive = is_alive
        self.send_signal = send_signal
        self.powerdown = powerdown
        self.sleep = sleep
        self.policy = policy or ShutdownPolicy()
        self.state: Optional[ShutdownState] = None
        self.history: list[ShutdownState] = []

    def run(self) -> ShutdownState:
        self._enter(self._graceful())
        while self.state not in TERMINAL_STATES:
            self._enter(self._transitions[self.state](self))
        return self.state

    def _enter(self, state: ShutdownState) -> None:
        self.state = state
        self.history.append(state)

    def _alive(self) -> bool:
        return self.is_alive(self.pid)

    def _wait_gone(self, polls: int) -> bool:
        for _ in range(polls):
            if not self._alive():
                return True
            self.sleep(self.policy.interval_s)
        return not self._alive()

    def _signal(self, signum: int) -> Optional[ShutdownState]:
        try:
            self.send_signal(self.pid, signum)
        except ProcessLookupError:
            return ShutdownState.stopped
        except OSError as e:
            print(f"[vm] warning: failed to send {signal.Signals(signum).name}: {e}")
            if signum == signal.SIGKILL:
                return ShutdownState.failed
        return None

    # ---- transitions ----
    def _graceful(self) -> ShutdownState:
        if not self._alive():
            return ShutdownState.stopped
        if self.powerdown(self.monitor_path, self.policy.connect_timeout_s):
            print("[vm] system_powerdown sent, waiting for the guest")
            if self._wait_gone(self.policy.graceful_polls):
                return ShutdownState.stopped
            print("[vm] VM did not shut down gracefully, proceeding to force stop")
        return ShutdownState.graceful_attempted

    def _terminate(self) -> ShutdownState:
        if not self._alive():
            return ShutdownState.stopped
        print(f"[vm] sending SIGTERM to process {self.pid}")
        outcome = self._signal(signal.SIGTERM)
        if outcome is not None:
            return outcome
        if self._wait_gone(self.policy.terminate_polls):
            return ShutdownState.stopped
        return ShutdownState.terminate_sent

    def _kill(self) -> ShutdownState:
        print(f"[vm] process {self.pid} ignored SIGTERM, sending SIGKILL")
        outcome = self._signal(signal.SIGKILL)
        if outcome is not None:
            return outcome
        self.sleep(self.policy.interval_s)
        return ShutdownState.kill_sent

    def _verify(self) -> ShutdownState:
        if self._alive():
            return ShutdownState.failed
        return ShutdownState.stopped

    _transitions = {
        ShutdownState.graceful_attempted: _terminate,
        ShutdownState.terminate_sent: _kill,
        ShutdownState.kill_sent: _verify,
    }
