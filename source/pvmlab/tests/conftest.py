# conftest.py
import os
import signal
import sys
import pathlib

import pytest

# ----------------------
# Path setup: make `source/` importable so `import pvmlab` resolves to
# source/pvmlab without installing the project
# ----------------------
_THIS_DIR = pathlib.Path(__file__).resolve().parent
_SRC_ROOT = _THIS_DIR.parent.parent  # source/
if str(_SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(_SRC_ROOT))

from pvmlab import settings  # noqa: E402
from pvmlab.implementations.store import MetadataStore  # noqa: E402
from pvmlab.implementations.runner import Supervisor  # noqa: E402
from pvmlab.models import Arch, CommandResult, Role, VMRecord  # noqa: E402


# ----------------------
# Test Utilities / Fakes
# ----------------------
class FakeLiveness:
    """Process table stand-in: a pid is alive while it is in `alive`."""

    def __init__(self, *pids: int):
        self.alive = set(pids)
        self.calls: list[int] = []

    def __call__(self, pid: int) -> bool:
        self.calls.append(pid)
        return pid in self.alive


class FakeCommandRunner:
    """
    Records every argv. When `pid` and `pidfile` are set, a successful run
    writes the pidfile the way a daemonized QEMU would.
    """

    def __init__(self, returncode: int = 0, output: str = ""):
        self.returncode = returncode
        self.output = output
        self.calls: list[list[str]] = []
        self.pid: int | None = None
        self.pidfile: str | None = None
        self.on_run = None

    def __call__(self, args: list[str]) -> CommandResult:
        self.calls.append(list(args))
        if self.on_run is not None:
            self.on_run(args)
        if self.returncode == 0 and self.pid and self.pidfile:
            os.makedirs(os.path.dirname(self.pidfile), exist_ok=True)
            with open(self.pidfile, "w", encoding="utf-8") as f:
                f.write(f"{self.pid}\n")
        return CommandResult(self.returncode, self.output)


class FakeSignals:
    def __init__(self, liveness: FakeLiveness | None = None, kills_on=()):
        self.sent: list[tuple[int, int]] = []
        self.liveness = liveness
        self.kills_on = set(kills_on)

    def __call__(self, pid: int, signum: int) -> None:
        self.sent.append((pid, signum))
        if self.liveness is not None and signum in self.kills_on:
            self.liveness.alive.discard(pid)


class Sleeper:
    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, s: float) -> None:
        self.calls.append(s)


def make_record(name: str = "client1", **kw) -> VMRecord:
    defaults = dict(role=Role.target, arch=Arch.aarch64, mac="52:54:00:12:34:56")
    defaults.update(kw)
    return VMRecord(name=name, **defaults)


def touch(path: str, content: str = "") -> str:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    return path


# ----------------------
# Shared Fixtures
# ----------------------
@pytest.fixture(autouse=True)
def app_dir(tmp_path, monkeypatch) -> str:
    """Point the lab at a throwaway app dir with a deterministic host profile."""
    base = tmp_path / "pvmlab"
    base.mkdir()
    monkeypatch.setattr(settings, "APP_DIR", str(base))
    monkeypatch.setattr(settings, "IN_CI", False)
    monkeypatch.setattr(settings, "QEMU_ACCEL", "")
    monkeypatch.setattr(settings, "SOCKET_VMNET_CLIENT", "/opt/vmnet/client")
    monkeypatch.setattr(settings, "SOCKET_VMNET_PATH", "/var/run/test.vmnet")
    return str(base)


@pytest.fixture
def store(app_dir) -> MetadataStore:
    return MetadataStore()


@pytest.fixture
def liveness() -> FakeLiveness:
    return FakeLiveness()


@pytest.fixture
def runner() -> FakeCommandRunner:
    return FakeCommandRunner()


@pytest.fixture
def sleeper() -> Sleeper:
    return Sleeper()


@pytest.fixture
def signals(liveness) -> FakeSignals:
    """SIGTERM kills the process unless a test says otherwise."""
    return FakeSignals(liveness, kills_on={signal.SIGTERM})


@pytest.fixture
def supervisor(store, liveness, runner, sleeper, signals) -> Supervisor:
    return Supervisor(
        store,
        is_alive=liveness,
        run_command=runner,
        allocate_port=lambda: 2222,
        sleep=sleeper,
        send_signal=signals,
        powerdown=lambda path, timeout: False,
    )


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def touch_file():
    return touch


@pytest.fixture
def fakes():
    """Fake classes for tests that need their own instances."""
    return {
        "liveness": FakeLiveness,
        "runner": FakeCommandRunner,
        "signals": FakeSignals,
        "sleeper": Sleeper,
    }
