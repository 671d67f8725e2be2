# conftest.py
import os
import sys
import pathlib

import pytest

# ----------------------
# Path setup: make `source/` importable so `import installer` works
# without installing the project
# ----------------------
_THIS_DIR = pathlib.Path(__file__).resolve().parent
_SRC_ROOT = _THIS_DIR.parent.parent  # source/
if str(_SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(_SRC_ROOT))

from installer import settings, utils  # noqa: E402
from installer.errors import CommandError  # noqa: E402


# ----------------------
# Test Utilities / Fakes
# ----------------------
class FakeCommands:
    """
    Records every external command instead of running it.
    A command fails when `fails(args)` is true; `wget -O <file>` creates
    the file so later steps can chmod it.
    """

    def __init__(self):
        self.calls: list[list[str]] = []
        self.fails = lambda args: False

    def __call__(self, args: list[str]) -> None:
        self.calls.append(list(args))
        if self.fails(args):
            raise CommandError(f"{' '.join(args)}: exit status 1")
        if args[:2] == ["wget", "-O"] and args[2] != "-":
            os.makedirs(os.path.dirname(args[2]), exist_ok=True)
            open(args[2], "w").close()

    def fail_on(self, *prefixes: str) -> None:
        self.fails = lambda args: any(" ".join(args).startswith(p) for p in prefixes)

    def firsts(self) -> list[str]:
        return [c[0] for c in self.calls]


# ----------------------
# Shared Fixtures
# ----------------------
@pytest.fixture(autouse=True)
def target_root(tmp_path, monkeypatch) -> str:
    """Throwaway target root and host files; no pauses."""
    root = tmp_path / "target"
    root.mkdir()
    host = tmp_path / "host"
    host.mkdir()
    monkeypatch.setattr(settings, "TARGET_ROOT", str(root))
    monkeypatch.setattr(settings, "SETTLE_S", 0)
    monkeypatch.setattr(settings, "CMDLINE_PATH", str(host / "cmdline"))
    monkeypatch.setattr(settings, "RESOLV_CONF", str(host / "resolv.conf"))
    monkeypatch.setattr(settings, "SYS_CLASS_NET", str(host / "net"))
    monkeypatch.setattr(settings, "SYSRQ_TRIGGER", str(host / "sysrq-trigger"))
    monkeypatch.setattr(settings, "DEBUG_SHELL", "/bin/true")
    return str(root)


@pytest.fixture
def commands(monkeypatch) -> FakeCommands:
    fake = FakeCommands()
    monkeypatch.setattr(utils, "run_command", fake)
    return fake


@pytest.fixture
def host_file():
    def _write(path: str, content: str = "") -> str:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        return path

    return _write


@pytest.fixture
def nics(host_file):
    """Fake /sys/class/net with the given {name: mac} interfaces."""

    def _make(**ifaces: str) -> str:
        os.makedirs(settings.SYS_CLASS_NET, exist_ok=True)
        for name, mac in ifaces.items():
            host_file(os.path.join(settings.SYS_CLASS_NET, name, "address"), mac + "\n")
        return settings.SYS_CLASS_NET

    return _make
