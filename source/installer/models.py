from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel


@dataclass
class NetworkConfig:
    """Boot parameters read from the kernel command line."""

    ip: str = "dhcp"
    mac: str = ""
    config_url: str = ""
    interface: str = ""


@dataclass
class CloudInitData:
    meta_data: str = ""
    user_data: str = ""
    network_config: str = ""

    def documents(self) -> dict[str, str]:
        return {
            "meta-data": self.meta_data,
            "user-data": self.user_data,
            "network-config": self.network_config,
        }


class InstallerConfig(BaseModel):
    """Served by the boot service at /config/<mac>."""

    cloud_init_url: str
    distro: str
    arch: str
    rootfs_url: str
    kmods_url: str = ""
    kernel_url: str
    reboot_on_success: bool = True
