"""Conector REST: polling HTTP con requests y aplanado del JSON de respuesta."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from ..core.domain import InterfaceType, ProtocolType, Reading, utc_now
from ..core.errors import ConfigValidationError, PayloadParseError, TransportError
from ..normalizers import diagnostic_reading, json_to_readings, parse_json
from .polling import PollingConnector
from .registry import register_connector

logger = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
AUTH_TYPES = ("none", "basic", "bearer", "apikey")


def _normalize_path(json_path: str) -> str:
    """'$.data.temp' y 'data.temp' seleccionan el mismo campo aplanado."""
    path = json_path.strip()
    if path.startswith("$"):
        path = path[1:]
    return path.lstrip(".")


def _coerce(value: Any, data_type: Optional[str]) -> Any:
    if data_type == "number":
        try:
            return float(value)
        except (TypeError, ValueError):
            return value
    if data_type == "boolean":
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if data_type == "string":
        return str(value)
    return value


@register_connector(InterfaceType.API, ProtocolType.API_REST)
class RestApiConnector(PollingConnector):
    source_kind = "API"
    required_fields = ("url", "method")
    default_poll_interval_ms = 60000
    default_reconnect_interval_ms = 60000

    base_tag = "api_data"

    def __init__(self, config, sink, **kwargs):
        super().__init__(config, sink, **kwargs)
        self._session: Optional[requests.Session] = None
        self._mapping = self._parse_mapping(self.settings.get("responseMapping"))

    @staticmethod
    def _parse_mapping(raw: Any) -> Dict[str, Dict[str, Any]]:
        if not raw:
            return {}
        mapping = {}
        for entry in raw:
            path = entry.get("jsonPath")
            if not path or not entry.get("tagName"):
                raise ConfigValidationError.missing(["responseMapping[].jsonPath", "responseMapping[].tagName"])
            mapping[_normalize_path(str(path))] = dict(entry)
        return mapping

    def _validate(self) -> None:
        method = str(self.settings["method"]).upper()
        if method not in HTTP_METHODS:
            raise ConfigValidationError(f"Invalid HTTP method '{method}'", missing_fields=["method"])
        auth = self.settings.get("authentication") or {}
        auth_type = str(auth.get("type", "none")).lower()
        if auth_type not in AUTH_TYPES:
            raise ConfigValidationError(
                f"Invalid authentication type '{auth_type}'", missing_fields=["authentication.type"]
            )

    def base_metadata(self):
        return {**super().base_metadata(), "url": self.settings.get("url")}

    def build_request(self) -> Dict[str, Any]:
        """kwargs para requests.Session.request según la config."""
        headers = {"Accept": "application/json", **(self.settings.get("headers") or {})}
        request: Dict[str, Any] = {
            "method": str(self.settings["method"]).upper(),
            "url": str(self.settings["url"]),
            "headers": headers,
            "params": self.settings.get("params") or None,
            "timeout": self.interval_seconds("timeout", 30000),
        }

        body = self.settings.get("body")
        if body is not None and request["method"] != "GET":
            if isinstance(body, (dict, list)):
                request["json"] = body
            else:
                request["data"] = str(body)

        auth = self.settings.get("authentication") or {}
        auth_type = str(auth.get("type", "none")).lower()
        credentials = auth.get("credentials") or {}
        if auth_type == "basic":
            request["auth"] = (credentials.get("username", ""), credentials.get("password", ""))
        elif auth_type == "bearer":
            headers["Authorization"] = f"Bearer {credentials.get('token', '')}"
        elif auth_type == "apikey":
            headers[credentials.get("header") or "X-API-Key"] = credentials.get("key", "")
        return request

    def _connect(self) -> None:
        self._session = requests.Session()

    def _disconnect(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            session.close()

    def _poll(self, generation: int) -> None:
        session = self._session
        if session is None:
            return
        request = self.build_request()
        try:
            response = session.request(**request)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransportError(f"API unreachable: {e}") from e
        except requests.RequestException as e:
            logger.warning("%s Request to %s failed: %s", self.log_tag, request["url"], e)
            self._record_error(e)
            return

        if not response.ok:
            logger.warning(
                "%s %s responded with status: %s", self.log_tag, request["url"], response.status_code
            )
            self._record_error(f"API responded with status: {response.status_code}")
            return

        self._handle_data(response.content, generation)

    def process_data(self, raw: Any) -> List[Reading]:
        timestamp = utc_now()
        metadata = self.base_metadata()

        if isinstance(raw, (bytes, bytearray, str)):
            try:
                data = parse_json(raw)
            except PayloadParseError as e:
                return [
                    diagnostic_reading(
                        raw, e, source_id=self.source_id, timestamp=timestamp,
                        base_tag=self.base_tag, metadata=metadata,
                    )
                ]
        else:
            data = raw

        readings = json_to_readings(
            data,
            source_id=self.source_id,
            timestamp=timestamp,
            base_tag=self.base_tag,
            metadata=metadata,
        )
        if not self._mapping:
            return readings
        return self._apply_mapping(readings)

    def _apply_mapping(self, readings: List[Reading]) -> List[Reading]:
        mapped = []
        for reading in readings:
            entry = self._mapping.get(reading.metadata.get("field", ""))
            if entry is None:
                continue
            metadata = dict(reading.metadata)
            if entry.get("unit"):
                metadata["unit"] = entry["unit"]
            mapped.append(
                Reading(
                    source_id=reading.source_id,
                    tag_name=str(entry["tagName"]),
                    value=_coerce(reading.value, entry.get("dataType")),
                    timestamp=reading.timestamp,
                    quality=reading.quality,
                    metadata=metadata,
                )
            )
        return mapped
