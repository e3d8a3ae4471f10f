"""Superficie HTTP de control del manager de fuentes.

Las rutas son las que consume la capa web del historian: acciones de
ciclo de vida, status en runtime y prueba de conexión.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..core.errors import SourceNotFoundError
from ..manager import SourceManager, probe_connection
from .schemas import ManagerAction, ManagerActionIn, SourceConfigIn

router = APIRouter(prefix="/data-sources", tags=["data-sources"])
logger = logging.getLogger(__name__)


def get_manager(request: Request) -> SourceManager:
    return request.app.state.source_manager


def _status_dict(manager: SourceManager, source_id: int) -> Optional[dict]:
    status = manager.get_status(source_id)
    if status is None:
        return None
    return {"sourceId": source_id, **status.to_dict()}


@router.get("/manager")
def manager_overview(manager: SourceManager = Depends(get_manager)):
    """Status de todas las fuentes + resumen + info de depuración."""
    statuses = [
        {"sourceId": source_id, **status.to_dict()}
        for source_id, status in sorted(manager.get_all_statuses().items())
    ]
    return {
        "statuses": statuses,
        "summary": manager.get_summary(),
        "debugInfo": manager.get_debug_info(),
    }


@router.post("/manager")
def manager_action(body: ManagerActionIn, manager: SourceManager = Depends(get_manager)):
    """Ejecuta start|stop|restart|remove sobre una fuente.

    start acepta una config inline para un id persistido; si no viene, se
    usa la config guardada.
    """
    source_id = body.source_id
    if source_id is None and body.action is ManagerAction.START and body.config is not None:
        source_id = body.config.id
    if source_id is None:
        raise HTTPException(status_code=400, detail="sourceId is required")

    logger.info("[API] Manager action=%s source_id=%s", body.action.value, source_id)

    if body.action is ManagerAction.START:
        # Las lecturas referencian data_sources: solo se arrancan ids persistidos
        persisted = manager.repository.get(source_id)
        if persisted is None:
            raise SourceNotFoundError(source_id)
        config = body.config.to_source_config(source_id) if body.config is not None else persisted
        manager.start_source(config)
        return {
            "success": True,
            "action": body.action.value,
            "sourceId": config.id,
            "message": f"Data source {config.id} started",
            "status": _status_dict(manager, config.id),
        }

    if body.action is ManagerAction.STOP:
        success = manager.stop_source(source_id)
        message = f"Data source {source_id} stopped" if success else f"Data source {source_id} was not running"
    elif body.action is ManagerAction.RESTART:
        success = manager.restart_source(source_id)
        message = (
            f"Data source {source_id} restarted"
            if success
            else f"Data source {source_id} is inactive and was stopped"
        )
    else:
        success = manager.remove_source(source_id)
        message = f"Data source {source_id} removed" if success else f"Data source {source_id} was not registered"

    return {
        "success": success,
        "action": body.action.value,
        "sourceId": source_id,
        "message": message,
        "status": _status_dict(manager, source_id),
    }


@router.get("/status")
def source_status(
    source_id: Optional[int] = Query(None, ge=1, description="Filter by source ID"),
    manager: SourceManager = Depends(get_manager),
):
    if source_id is None:
        return {
            "statuses": [
                {"sourceId": sid, **status.to_dict()}
                for sid, status in sorted(manager.get_all_statuses().items())
            ]
        }
    status = _status_dict(manager, source_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"Data source {source_id} is not registered")
    return status


@router.post("/test-connection")
def test_connection(body: SourceConfigIn, request: Request):
    """Prueba de conexión puntual; no registra ni arranca la fuente."""
    settings = request.app.state.settings
    result = probe_connection(body.to_source_config(), timeout=settings.probe_timeout_seconds)
    return result.to_dict()


@router.post("/{source_id}/start")
def start_source(source_id: int, manager: SourceManager = Depends(get_manager)):
    config = manager.repository.get(source_id)
    if config is None:
        raise SourceNotFoundError(source_id)
    manager.start_source(config)
    return {"success": True, "sourceId": source_id, "status": _status_dict(manager, source_id)}


@router.post("/{source_id}/stop")
def stop_source(source_id: int, manager: SourceManager = Depends(get_manager)):
    stopped = manager.stop_source(source_id)
    return {"success": stopped, "sourceId": source_id}
