# conftest.py
import json
import os
import sys
import pathlib

import pytest
from fastapi.testclient import TestClient

# ----------------------
# Path setup: make `source/` importable so `import boot_service` works
# without installing the project
# ----------------------
_THIS_DIR = pathlib.Path(__file__).resolve().parent
_SRC_ROOT = _THIS_DIR.parent.parent  # source/
if str(_SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(_SRC_ROOT))

from boot_service import settings  # noqa: E402
import boot_service.main as main  # noqa: E402

PUBKEY = "ssh-rsa AAAAB3NzaTEST lab"


# ----------------------
# Shared Fixtures
# ----------------------
@pytest.fixture(autouse=True)
def vms_dir(tmp_path, monkeypatch) -> str:
    """Empty VM definitions directory, as mounted into the provisioner."""
    d = tmp_path / "vms"
    d.mkdir()
    monkeypatch.setattr(settings, "VMS_DIR", str(d))
    return str(d)


@pytest.fixture
def write_vm(vms_dir):
    """Write a VM record the way the lab tool stores it."""

    def _write(name="client1", filename=None, **kw):
        data = {
            "name": name,
            "role": "target",
            "arch": "aarch64",
            "mac": "52:54:00:12:34:56",
            "pxeboot": True,
            "distro": "ubuntu-24.04",
            "ssh_key": PUBKEY,
            "kernel": "ubuntu-24.04/aarch64/vmlinuz",
            "initrd": "ubuntu-24.04/aarch64/modules.cpio.gz",
        }
        data.update(kw)
        path = os.path.join(vms_dir, filename or f"{name}.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        return path

    return _write


@pytest.fixture
def template(tmp_path, monkeypatch):
    """Point the service at a small template the test controls."""

    def _template(text: str) -> str:
        path = tmp_path / "boot.ipxe.template"
        path.write_text(text, encoding="utf-8")
        monkeypatch.setattr(settings, "TEMPLATE_PATH", str(path))
        return str(path)

    return _template


@pytest.fixture
def pubkey() -> str:
    return PUBKEY


@pytest.fixture
def client() -> TestClient:
    return TestClient(main.app)
