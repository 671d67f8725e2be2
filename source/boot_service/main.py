from __future__ import annotations

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from boot_service import settings
from boot_service.routes import boot_router, cloud_init_router

# ===== FastAPI app =====
app = FastAPI(title="pvmlab-boot-service", version="0.1.0")


@app.exception_handler(StarletteHTTPException)
async def plaintext_errors(request: Request, exc: StarletteHTTPException):
    # iPXE and the installer print whatever body they get back
    return PlainTextResponse(str(exc.detail), status_code=exc.status_code)


@app.get("/health")
async def health():
    return JSONResponse({"ok": True})


app.include_router(boot_router)
app.include_router(cloud_init_router)


# ===== Entrypoint =====
def run() -> None:
    print(
        f"[boot] serving on {settings.HOST}:{settings.PORT}, "
        f"VM definitions in {settings.VMS_DIR}"
    )
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, reload=False)


if __name__ == "__main__":
    run()
