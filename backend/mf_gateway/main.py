from fastapi import FastAPI

from .routes.auth import router as auth_router
from .routes.gateway import router as gateway_router
from .routes.interfaces import router as interfaces_router


app = FastAPI(title="MF Gateway")


app.include_router(auth_router, prefix="/api/auth", tags=["auth"])
app.include_router(interfaces_router, prefix="/api/interfaces", tags=["interfaces"])
app.include_router(gateway_router, prefix="/api/gateway", tags=["gateway"])


@app.get("/healthz")
async def healthz() -> dict:
    return {"ok": True}
