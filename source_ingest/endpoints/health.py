"""Health and readiness endpoints."""

from fastapi import APIRouter, HTTPException, Request

from common.db import check_connection

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request):
    """Liveness: el proceso responde y el manager existe."""
    manager = request.app.state.source_manager
    return {
        "status": "ok",
        "managerInitialized": manager.is_initialized,
        "summary": manager.get_summary(),
    }


@router.get("/ready")
def ready(request: Request):
    """Readiness: la BD responde."""
    if not check_connection(request.app.state.engine):
        raise HTTPException(status_code=503, detail="not ready")
    return {"status": "ready"}
