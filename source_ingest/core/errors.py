"""Taxonomía de errores del runtime de fuentes.

Solo ConfigValidationError (y sus subclases) se propaga al llamador de
start_source; el resto se absorbe en el conector y queda reflejado en
get_status().last_error.
"""

from __future__ import annotations

from typing import Iterable, List, Optional


class IngestError(Exception):
    """Base de todos los errores del runtime."""


class ConfigValidationError(IngestError):
    """Configuración incompleta o inválida. Fatal para el arranque, sin retry."""

    def __init__(self, message: str, missing_fields: Optional[Iterable[str]] = None):
        self.missing_fields: List[str] = list(missing_fields or [])
        super().__init__(message)

    @classmethod
    def missing(cls, fields: Iterable[str], source_name: str = "") -> "ConfigValidationError":
        fields = list(fields)
        where = f" for source '{source_name}'" if source_name else ""
        return cls(
            f"Missing required config field(s){where}: {', '.join(fields)}",
            missing_fields=fields,
        )


class UnsupportedSourceError(ConfigValidationError):
    """No hay conector registrado para el tipo de interfaz/protocolo."""


class SourceNotFoundError(IngestError):
    """La fuente no existe en el store de configuración."""

    def __init__(self, source_id: int):
        self.source_id = source_id
        super().__init__(f"Data source {source_id} not found")


class TransportError(IngestError):
    """Fallo de conexión/lectura/escritura. Dispara el supervisor de reconexión."""


class PayloadParseError(IngestError):
    """Contenido de mensaje malformado. Se recupera como lectura de diagnóstico."""

    def __init__(self, message: str, raw: object = None):
        self.raw = raw
        super().__init__(message)


class StorageError(IngestError):
    """Fallo del sink de persistencia. Se loguea y la ingesta continúa."""
