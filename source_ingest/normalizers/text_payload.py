"""Payloads de texto de sockets y ficheros: JSON, CSV o crudo."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core.domain import Reading
from ..core.errors import PayloadParseError
from .csv_rows import CsvOptions, csv_to_readings
from .json_flatten import diagnostic_reading, json_to_readings, looks_like_json, parse_json

PAYLOAD_FORMATS = ("auto", "json", "jsonl", "csv", "raw")


def resolve_format(settings: Dict[str, Any], default: str = "auto") -> str:
    fmt = str(settings.get("format") or default).lower()
    if fmt == "text":
        fmt = "raw"
    if fmt not in PAYLOAD_FORMATS:
        fmt = default
    # Un delimitador configurado sin formato explícito implica CSV
    if not settings.get("format") and settings.get("delimiter"):
        fmt = "csv"
    return fmt


def _json_document(
    text: str,
    *,
    source_id: int,
    timestamp: datetime,
    base_tag: str,
    metadata: Dict[str, Any],
) -> List[Reading]:
    try:
        data = parse_json(text)
    except PayloadParseError as e:
        return [
            diagnostic_reading(
                text, e, source_id=source_id, timestamp=timestamp,
                base_tag=base_tag, metadata=metadata,
            )
        ]
    return json_to_readings(
        data, source_id=source_id, timestamp=timestamp, base_tag=base_tag, metadata=metadata
    )


def text_payload_to_readings(
    text: str,
    *,
    source_id: int,
    timestamp: datetime,
    base_tag: str,
    fmt: str = "auto",
    csv_options: Optional[CsvOptions] = None,
    first_line: int = 0,
    metadata: Optional[Dict[str, Any]] = None,
) -> List[Reading]:
    """Normaliza un bloque de texto según el formato configurado.

    - json: el bloque es un documento; malformado → lectura <base_tag>_raw
    - jsonl: un documento por línea, cada línea se recupera por separado
    - csv: ver csv_rows
    - raw: una lectura base_tag con el texto
    - auto: json si empieza por '{' o '[', raw en otro caso
    """
    metadata = dict(metadata or {})

    if fmt == "auto":
        fmt = "json" if looks_like_json(text) else "raw"

    if fmt == "json":
        return _json_document(
            text, source_id=source_id, timestamp=timestamp, base_tag=base_tag, metadata=metadata
        )

    if fmt == "jsonl":
        readings: List[Reading] = []
        for offset, line in enumerate(text.splitlines()):
            if not line.strip():
                continue
            readings.extend(
                _json_document(
                    line, source_id=source_id, timestamp=timestamp, base_tag=base_tag,
                    metadata={**metadata, "line": first_line + offset},
                )
            )
        return readings

    if fmt == "csv":
        return csv_to_readings(
            text,
            source_id=source_id,
            timestamp=timestamp,
            options=csv_options or CsvOptions(),
            first_line=first_line,
            metadata=metadata,
        )

    return [
        Reading(
            source_id=source_id,
            tag_name=base_tag,
            value=text,
            timestamp=timestamp,
            metadata={**metadata, "rawData": text},
        )
    ]
