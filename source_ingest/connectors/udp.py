"""Conector UDP: socket ligado a host:port, un datagrama = un payload."""

from __future__ import annotations

import logging
import socket
import threading
from typing import Any, List, NamedTuple, Optional

from ..core.domain import InterfaceType, Reading, utc_now
from ..core.errors import ConfigValidationError, TransportError
from ..normalizers import CsvOptions, resolve_format, text_payload_to_readings
from .base import BaseConnector, join_worker
from .registry import register_connector

logger = logging.getLogger(__name__)

# Cada cuánto el loop de recepción revisa si debe terminar
RECV_POLL_SECONDS = 1.0


class Datagram(NamedTuple):
    payload: bytes
    remote_host: str
    remote_port: int


@register_connector(InterfaceType.UDP)
class UdpConnector(BaseConnector):
    source_kind = "UDP"
    required_fields = ("port",)
    default_reconnect_interval_ms = 5000

    base_tag = "udp_data"

    def __init__(self, config, sink, **kwargs):
        super().__init__(config, sink, **kwargs)
        self._sock: Optional[socket.socket] = None
        self._reader: Optional[threading.Thread] = None
        self._format = resolve_format(self.settings)
        self._csv_options = CsvOptions.from_settings(self.settings)

    @property
    def bind_host(self) -> str:
        return str(self.settings.get("host") or "0.0.0.0")

    @property
    def port(self) -> int:
        return int(self.settings["port"])

    def _validate(self) -> None:
        try:
            port = self.port
        except (TypeError, ValueError):
            port = -1
        if not 0 <= port <= 65535:
            raise ConfigValidationError(
                f"Invalid UDP port '{self.settings.get('port')}'", missing_fields=["port"]
            )

    def base_metadata(self):
        return {**super().base_metadata(), "port": self.port}

    def _open(self, generation: int) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.bind_host, self.port))
        except OSError as e:
            sock.close()
            raise TransportError(f"Bind to {self.bind_host}:{self.port} failed: {e}") from e

        sock.settimeout(RECV_POLL_SECONDS)
        self._sock = sock
        self._reader = threading.Thread(
            target=self._receive_loop,
            args=(sock, generation),
            name=f"udp-reader-{self.source_id}",
            daemon=True,
        )
        self._reader.start()
        logger.info("%s Listening on %s:%d", self.log_tag, self.bind_host, self.port)

    def _receive_loop(self, sock: socket.socket, generation: int) -> None:
        buffer_size = int(self.settings.get("bufferSize") or 65535)
        while self.is_current(generation):
            try:
                payload, (remote_host, remote_port) = sock.recvfrom(buffer_size)[:2]
            except socket.timeout:
                continue
            except OSError as e:
                self._handle_transport_error(TransportError(f"Receive error: {e}"), generation)
                return
            self._handle_data(Datagram(payload, remote_host, remote_port), generation)

    def _close(self) -> None:
        sock, self._sock = self._sock, None
        reader, self._reader = self._reader, None
        if sock is not None:
            sock.close()
        join_worker(reader, timeout=RECV_POLL_SECONDS * 3)

    def process_data(self, raw: Any) -> List[Reading]:
        metadata = self.base_metadata()
        if isinstance(raw, Datagram):
            metadata.update(remoteAddress=raw.remote_host, remotePort=raw.remote_port)
            raw = raw.payload
        encoding = str(self.settings.get("encoding") or "utf-8")
        text = raw.decode(encoding, errors="replace") if isinstance(raw, (bytes, bytearray)) else str(raw)
        return text_payload_to_readings(
            text,
            source_id=self.source_id,
            timestamp=utc_now(),
            base_tag=self.base_tag,
            fmt=self._format,
            csv_options=self._csv_options,
            metadata=metadata,
        )
