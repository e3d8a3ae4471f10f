"""Normalización de filas CSV (File/TCP/UDP)."""

from __future__ import annotations

import csv
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..core.domain import Reading


@dataclass(frozen=True)
class CsvOptions:
    delimiter: str = ","
    headers: Sequence[str] = field(default_factory=tuple)
    skip_header: bool = False

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> CsvOptions:
        headers = settings.get("headers") or ()
        if isinstance(headers, str):
            headers = [h.strip() for h in headers.split(",")]
        return cls(
            delimiter=str(settings.get("delimiter") or ","),
            headers=tuple(headers),
            skip_header=bool(settings.get("skipHeader", False)),
        )


def coerce_number(cell: str) -> Any:
    """int, luego float finito; si no, el texto original (sin espacios)."""
    text = cell.strip()
    if not text or "_" in text:
        return text
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return text
    return number if math.isfinite(number) else text


def split_line(line: str, delimiter: str = ",") -> List[str]:
    # csv.reader respeta comillas y delimitadores escapados
    rows = list(csv.reader([line], delimiter=delimiter))
    return rows[0] if rows else []


def csv_to_readings(
    text: str,
    *,
    source_id: int,
    timestamp: datetime,
    options: CsvOptions,
    first_line: int = 0,
    metadata: Optional[Dict[str, Any]] = None,
) -> List[Reading]:
    """Una lectura por columna de cada línea no vacía.

    tag = cabecera configurada para esa columna, o column_<index>. El índice
    de línea (first_line + offset) va en metadata para desambiguar lecturas
    del mismo tag que llegan en el mismo lote.
    """
    metadata = metadata or {}
    readings: List[Reading] = []

    for offset, raw_line in enumerate(text.splitlines()):
        line = raw_line.strip()
        if not line:
            continue
        line_index = first_line + offset
        for col, cell in enumerate(split_line(line, options.delimiter)):
            if col < len(options.headers) and options.headers[col]:
                tag = str(options.headers[col])
            else:
                tag = f"column_{col}"
            readings.append(
                Reading(
                    source_id=source_id,
                    tag_name=tag,
                    value=coerce_number(cell),
                    timestamp=timestamp,
                    metadata={**metadata, "format": "csv", "line": line_index, "column": col},
                )
            )
    return readings
