from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    return {"status": "ok"}


@router.get("/readyz")
def readyz(request: Request):
    """Ready once the first full list of KafkaTopic objects is cached."""
    ctrl = request.app.state.controller
    body = {
        "ready": ctrl.ready,
        "tracked": len(ctrl.store),
        "queued": len(ctrl.queue),
        "delayed": ctrl.queue.waiting(),
    }
    return JSONResponse(status_code=200 if ctrl.ready else 503, content=body)
