import json
import os
from typing import Callable, Iterator, Optional

from pydantic import ValidationError

from boot_service import settings
from boot_service.models import BootVM


def load_records(vms_dir: Optional[str] = None) -> Iterator[BootVM]:
    """
    Yield every readable VM descriptor in the directory, in name order.
    Unreadable or malformed files are reported and skipped; a directory that
    cannot be listed raises KeyError like a miss does.
    """
    base = vms_dir or settings.VMS_DIR
    try:
        entries = sorted(os.listdir(base))
    except OSError as e:
        print(f"[boot] could not read vms directory {base}: {e}")
        raise KeyError(base) from e

    for entry in entries:
        path = os.path.join(base, entry)
        if not entry.endswith(".json") or os.path.isdir(path):
            continue
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            yield BootVM.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            print(f"[boot] warning: skipping {path}: {e}")


def _find(match: Callable[[BootVM], bool], key: str, vms_dir: Optional[str]) -> BootVM:
    for vm in load_records(vms_dir):
        if match(vm):
            return vm
    raise KeyError(key)


def find_by_mac(mac: str, vms_dir: Optional[str] = None) -> BootVM:
    wanted = mac.lower()
    return _find(lambda vm: vm.mac.lower() == wanted, mac, vms_dir)


def find_by_name(name: str, vms_dir: Optional[str] = None) -> BootVM:
    return _find(lambda vm: vm.name == name, name, vms_dir)


def no_reboot_requested(name: str, vms_dir: Optional[str] = None) -> bool:
    return os.path.exists(os.path.join(vms_dir or settings.VMS_DIR, f"{name}.noreboot"))
