"""Aplanado de JSON anidado a lecturas con tags 'a.b.c'."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import orjson

from ..core.domain import DataQuality, Reading
from ..core.errors import PayloadParseError


def parse_json(payload: Union[str, bytes, bytearray]) -> Any:
    """Parsea un payload JSON con orjson.

    Raises:
        PayloadParseError: si el contenido no es JSON válido
    """
    try:
        return orjson.loads(payload)
    except orjson.JSONDecodeError as e:
        raise PayloadParseError(f"Invalid JSON: {e}", raw=payload) from e


def looks_like_json(text: str) -> bool:
    stripped = text.lstrip()
    return stripped.startswith("{") or stripped.startswith("[")


def flatten_json(obj: Dict[str, Any], prefix: str = "") -> Iterator[Tuple[str, Any]]:
    """Recorrido en profundidad; las listas son hojas, no se recorren.

    El orden de salida sigue el orden de inserción de claves, así que el
    mismo payload produce siempre los mismos tags en el mismo orden.
    """
    for key, value in obj.items():
        full_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            yield from flatten_json(value, full_key)
        else:
            yield full_key, value


def json_to_readings(
    data: Any,
    *,
    source_id: int,
    timestamp: datetime,
    base_tag: str,
    tag_prefix: str = "",
    metadata: Optional[Dict[str, Any]] = None,
) -> List[Reading]:
    """Convierte un documento JSON ya parseado en lecturas.

    - objeto: una lectura por hoja, tag = tag_prefix + ruta
    - cualquier otra raíz (lista, escalar): una sola lectura con base_tag
    """
    metadata = metadata or {}

    if not isinstance(data, dict):
        return [
            Reading(
                source_id=source_id,
                tag_name=base_tag,
                value=data,
                timestamp=timestamp,
                metadata=dict(metadata),
            )
        ]

    readings = []
    for path, value in flatten_json(data):
        tag = f"{tag_prefix}.{path}" if tag_prefix else path
        readings.append(
            Reading(
                source_id=source_id,
                tag_name=tag,
                value=value,
                timestamp=timestamp,
                metadata={**metadata, "field": path},
            )
        )
    return readings


def diagnostic_reading(
    raw: Union[str, bytes],
    error: Exception,
    *,
    source_id: int,
    timestamp: datetime,
    base_tag: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> Reading:
    """Lectura de diagnóstico para un payload que no se pudo interpretar."""
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("utf-8", errors="replace")
    return Reading(
        source_id=source_id,
        tag_name=f"{base_tag}_raw",
        value=raw,
        timestamp=timestamp,
        quality=DataQuality.BAD,
        metadata={**(metadata or {}), "parseError": str(error)},
    )
