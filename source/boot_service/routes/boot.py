from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import PlainTextResponse

from boot_service.implementations import (
    TemplateError,
    find_by_mac,
    no_reboot_requested,
    render_boot_script,
)
from boot_service.models import InstallerConfig

boot_router = APIRouter()


@boot_router.get("/ipxe", response_class=PlainTextResponse)
async def ipxe_script(mac: Optional[str] = None) -> PlainTextResponse:
    if not mac:
        raise HTTPException(status_code=400, detail="mac query parameter is required")
    try:
        vm = find_by_mac(mac)
    except KeyError:
        print(f"[boot] no VM for MAC {mac}")
        raise HTTPException(status_code=404, detail=f"VM with MAC {mac} not found")
    try:
        script = render_boot_script(vm)
    except TemplateError as e:
        print(f"[boot] {e}")
        raise HTTPException(status_code=500, detail="Internal server error")
    return PlainTextResponse(script)


@boot_router.get("/config/{mac}", response_model=InstallerConfig)
async def installer_config(mac: str, request: Request) -> InstallerConfig:
    try:
        vm = find_by_mac(mac)
    except KeyError:
        print(f"[boot] no VM for MAC {mac}")
        raise HTTPException(status_code=404, detail=f"VM with MAC {mac} not found")

    base_url = f"http://{request.headers.get('host', '')}"
    images = f"{base_url}/images/{vm.distro}/{vm.arch}"
    return InstallerConfig(
        cloud_init_url=f"{base_url}/cloud-init/{vm.name}",
        distro=vm.distro,
        arch=vm.arch,
        rootfs_url=f"{images}/rootfs.tar.gz",
        kmods_url=f"{images}/modules.cpio.gz",
        kernel_url=f"{images}/{vm.kernel}",
        reboot_on_success=not no_reboot_requested(vm.name),
    )
