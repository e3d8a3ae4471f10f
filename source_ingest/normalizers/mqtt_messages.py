"""Normalización de mensajes MQTT (topic + payload)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from ..core.domain import Reading
from ..core.errors import PayloadParseError
from .json_flatten import json_to_readings, looks_like_json, parse_json


def mqtt_message_to_readings(
    topic: str,
    payload: Union[bytes, str],
    *,
    source_id: int,
    timestamp: datetime,
    metadata: Optional[Dict[str, Any]] = None,
) -> List[Reading]:
    """Payload objeto JSON → tags 'topic.campo'; otro caso → una lectura con tag=topic.

    El valor del caso no-objeto es el string crudo del mensaje. Si el
    payload parecía JSON pero no parsea, la lectura lleva parseError.
    """
    text = payload.decode("utf-8", errors="replace") if isinstance(payload, (bytes, bytearray)) else payload
    metadata = {**(metadata or {}), "topic": topic}

    try:
        message = parse_json(text)
    except PayloadParseError as e:
        extra: Dict[str, Any] = {"rawMessage": text}
        if looks_like_json(text):
            extra["parseError"] = str(e)
        return [
            Reading(
                source_id=source_id,
                tag_name=topic,
                value=text,
                timestamp=timestamp,
                metadata={**metadata, **extra},
            )
        ]

    if isinstance(message, dict):
        return json_to_readings(
            message,
            source_id=source_id,
            timestamp=timestamp,
            base_tag=topic,
            tag_prefix=topic,
            metadata=metadata,
        )

    return [
        Reading(
            source_id=source_id,
            tag_name=topic,
            value=text,
            timestamp=timestamp,
            metadata=metadata,
        )
    ]
