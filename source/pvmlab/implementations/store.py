import json
import os
from typing import Optional

from pvmlab import settings
from pvmlab.models import Arch, Role, VMRecord


class MetadataStore:
    """
    One JSON file per VM under <appdir>/vms. The directory is the database:
    every lookup re-reads it, there is no cache to invalidate.
    """

    def __init__(self, vms_dir: Optional[str] = None) -> None:
        self._vms_dir = vms_dir

    @property
    def vms_dir(self) -> str:
        return self._vms_dir or os.path.join(settings.APP_DIR, "vms")

    # ---- Keys ----
    def _path(self, name: str) -> str:
        return os.path.join(self.vms_dir, f"{name}.json")

    # ---- (de)Serialization ----
    @staticmethod
    def _to_dict(vm: VMRecord) -> dict[str, object]:
        data: dict[str, object] = {
            "name": vm.name,
            "role": vm.role.value,
            "arch": vm.arch.value,
            "ip": vm.ip,
            "subnet": vm.subnet,
            "ipv6": vm.ipv6,
            "subnetv6": vm.subnetv6,
            "mac": vm.mac,
            "pxe_boot_stack_tar": vm.pxe_boot_stack_tar,
            "docker_images_path": vm.docker_images_path,
            "vms_path": vm.vms_path,
            "ssh_port": int(vm.ssh_port or 0),
            "pxeboot": bool(vm.pxeboot),
            "distro": vm.distro,
            "ssh_key": vm.ssh_key,
            "kernel": vm.kernel,
            "initrd": vm.initrd,
        }
        # name, role and arch are always written; empty optionals are not
        required = ("name", "role", "arch")
        return {k: v for k, v in data.items() if k in required or v}

    @staticmethod
    def _from_dict(d: dict[str, object]) -> VMRecord:
        return VMRecord(
            name=str(d["name"]),
            role=Role(str(d["role"])),
            arch=Arch(str(d["arch"])),
            ip=str(d.get("ip") or ""),
            subnet=str(d.get("subnet") or ""),
            ipv6=str(d.get("ipv6") or ""),
            subnetv6=str(d.get("subnetv6") or ""),
            mac=str(d.get("mac") or ""),
            pxe_boot_stack_tar=str(d.get("pxe_boot_stack_tar") or ""),
            docker_images_path=str(d.get("docker_images_path") or ""),
            vms_path=str(d.get("vms_path") or ""),
            ssh_port=int(str(d.get("ssh_port") or 0)),
            pxeboot=bool(d.get("pxeboot", False)),
            distro=str(d.get("distro") or ""),
            ssh_key=str(d.get("ssh_key") or ""),
            kernel=str(d.get("kernel") or ""),
            initrd=str(d.get("initrd") or ""),
        )

    # ---- API ----
    def save(self, vm: VMRecord) -> None:
        os.makedirs(self.vms_dir, exist_ok=True)
        data = self._to_dict(vm)
        with open(self._path(vm.name), "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def load(self, name: str) -> VMRecord:
        path = self._path(name)
        if not os.path.exists(path):
            raise KeyError(name)
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
        try:
            return self._from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            raise ValueError(f"failed to unmarshal metadata for {name}: {e}") from e

    def exists(self, name: str) -> bool:
        return os.path.exists(self._path(name))

    def delete(self, name: str) -> None:
        try:
            os.remove(self._path(name))
        except FileNotFoundError:
            pass

    def all(self) -> dict[str, VMRecord]:
        """
        Every readable record keyed by VM name.
        A missing directory means no VMs; malformed files are skipped.
        """
        try:
            entries = sorted(os.listdir(self.vms_dir))
        except FileNotFoundError:
            return {}

        out: dict[str, VMRecord] = {}
        for entry in entries:
            if not entry.endswith(".json"):
                continue
            name = entry[: -len(".json")]
            try:
                out[name] = self.load(name)
            except (OSError, ValueError, KeyError) as e:
                print(f"[store] skipping {entry}: {e}")
                continue
        return out

    def find_provisioner(self) -> Optional[VMRecord]:
        for vm in self.all().values():
            if vm.role == Role.provisioner:
                return vm
        return None

    def get_provisioner(self) -> VMRecord:
        vm = self.find_provisioner()
        if vm is None:
            raise KeyError("no provisioner found")
        return vm

    def set_ssh_port(self, name: str, port: int) -> VMRecord:
        vm = self.load(name)
        vm.ssh_port = port
        self.save(vm)
        return vm
