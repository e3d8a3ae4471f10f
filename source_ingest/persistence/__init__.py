"""Persistencia: sink de lecturas y store de configuración de fuentes."""

from .schema import ensure_schema
from .sink import InMemoryReadingSink, ReadingSink, SqlReadingSink
from .source_repository import SourceConfigRepository

__all__ = [
    "ensure_schema",
    "InMemoryReadingSink",
    "ReadingSink",
    "SqlReadingSink",
    "SourceConfigRepository",
]
