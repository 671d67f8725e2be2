from __future__ import annotations

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response

from boot_service.implementations import RENDERERS, find_by_name

cloud_init_router = APIRouter(prefix="/cloud-init")

KINDS_HELP = (
    "Invalid file type requested. Please use "
    "/cloud-init/<vm_name>/(meta-data|user-data|network-config)"
)


@cloud_init_router.get("/{name}/{kind}")
async def cloud_init_document(name: str, kind: str) -> Response:
    try:
        vm = find_by_name(name)
    except KeyError:
        print(f"[boot] no VM named {name}")
        raise HTTPException(status_code=404, detail=f"Error finding VM {name}")

    render = RENDERERS.get(kind)
    if render is None:
        raise HTTPException(status_code=400, detail=KINDS_HELP)
    return Response(content=render(vm), media_type="text/yaml")
