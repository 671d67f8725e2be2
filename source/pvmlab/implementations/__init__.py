from .store import MetadataStore
from .runner import Supervisor, human_bytes
from .allocator import (
    check_for_duplicate_ips,
    check_for_duplicate_mac,
    check_existing_vms,
    generate_mac,
    get_mac,
)

__all__ = [
    "MetadataStore",
    "Supervisor",
    "human_bytes",
    "check_for_duplicate_ips",
    "check_for_duplicate_mac",
    "check_existing_vms",
    "generate_mac",
    "get_mac",
]
