from .boot import boot_router
from .cloud_init import cloud_init_router

__all__ = ["boot_router", "cloud_init_router"]
