"""Codificación de columnas JSON/timestamp para el store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Union

import orjson


def dumps_json(value: Any) -> str:
    return orjson.dumps(value, default=str, option=orjson.OPT_NON_STR_KEYS).decode("utf-8")


def loads_json(raw: Optional[Union[str, bytes]]) -> Any:
    if raw is None:
        return None
    return orjson.loads(raw)


def to_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def dump_timestamp(ts: datetime) -> str:
    return to_utc(ts).isoformat()


def load_timestamp(raw: Union[str, datetime]) -> datetime:
    # PostgreSQL devuelve datetime; SQLite devuelve el ISO string guardado
    if isinstance(raw, datetime):
        return to_utc(raw)
    return to_utc(datetime.fromisoformat(raw))
