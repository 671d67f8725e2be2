from __future__ import annotations

from pydantic import BaseModel, ConfigDict

UBUNTU_2404_ISOS = {
    "aarch64": "ubuntu-24.04.3-live-server-arm64.iso",
    "x86_64": "ubuntu-24.04.3-live-server-amd64.iso",
}


class BootVM(BaseModel):
    """The subset of a lab VM record the boot service cares about."""

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    arch: str = ""
    distro: str = ""
    mac: str = ""
    ssh_key: str = ""
    kernel: str = ""
    initrd: str = ""
    pxeboot: bool = False

    @property
    def iso_name(self) -> str:
        if self.distro == "ubuntu-24.04":
            return UBUNTU_2404_ISOS.get(self.arch, "")
        return ""

    def template_fields(self) -> dict[str, str]:
        return {
            "name": self.name,
            "arch": self.arch,
            "distro": self.distro,
            "mac": self.mac,
            "iso_name": self.iso_name,
            "kernel": self.kernel,
            "initrd": self.initrd,
        }


class InstallerConfig(BaseModel):
    cloud_init_url: str
    distro: str
    arch: str
    rootfs_url: str
    kmods_url: str
    kernel_url: str
    reboot_on_success: bool
