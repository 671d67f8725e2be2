from .lookup import find_by_mac, find_by_name, load_records, no_reboot_requested
from .cloud_init import RENDERERS, render_meta_data, render_network_config, render_user_data
from .ipxe import TemplateError, render_boot_script

__all__ = [
    "find_by_mac",
    "find_by_name",
    "load_records",
    "no_reboot_requested",
    "RENDERERS",
    "render_meta_data",
    "render_user_data",
    "render_network_config",
    "TemplateError",
    "render_boot_script",
]
