"""Modelos de dominio del runtime de fuentes."""

from .reading import DataQuality, Location, Reading, utc_now
from .source_config import InterfaceType, ProtocolType, SourceConfig

__all__ = [
    "DataQuality",
    "Location",
    "Reading",
    "utc_now",
    "InterfaceType",
    "ProtocolType",
    "SourceConfig",
]
