from .vms import (
    Role,
    Arch,
    VMStatus,
    VMRecord,
    VMPaths,
    VMProc,
    CommandResult,
    VMListing,
)


__all__ = [
    "Role",
    "Arch",
    "VMStatus",
    "VMRecord",
    "VMPaths",
    "VMProc",
    "CommandResult",
    "VMListing",
]
