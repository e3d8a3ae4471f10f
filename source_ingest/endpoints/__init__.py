"""Módulo de endpoints HTTP."""

from .data_sources import router as data_sources_router
from .health import router as health_router

__all__ = ["data_sources_router", "health_router"]
