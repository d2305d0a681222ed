from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()


@router.get("/")
async def healthcheck(request: Request):
    healthy = await request.app.state.store.health_check()
    if not healthy:
        return JSONResponse(status_code=503, content={"status": "unavailable"})
    return {"status": "ok"}
