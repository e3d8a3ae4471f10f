"""Conector TCP cliente: un thread lector por conexión."""

from __future__ import annotations

import codecs
import logging
import socket
import threading
from typing import Any, List, Optional

from ..core.domain import InterfaceType, Reading, utc_now
from ..core.errors import ConfigValidationError, TransportError
from ..normalizers import CsvOptions, resolve_format, text_payload_to_readings
from .base import BaseConnector, join_worker
from .registry import register_connector

logger = logging.getLogger(__name__)

FRAMING_MODES = ("chunk", "line")
MAX_LINE_BUFFER = 64 * 1024


class LineFramer:
    """Acumula texto y entrega líneas completas."""

    def __init__(self, max_buffer: int = MAX_LINE_BUFFER):
        self._buffer = ""
        self._max_buffer = max_buffer

    def feed(self, text: str) -> List[str]:
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        if len(self._buffer) > self._max_buffer:
            # Sin terminador a la vista: se entrega lo acumulado
            lines.append(self._buffer)
            self._buffer = ""
        return [line.rstrip("\r") for line in lines if line.strip()]


@register_connector(InterfaceType.TCP)
class TcpConnector(BaseConnector):
    source_kind = "TCP"
    required_fields = ("host", "port")
    default_reconnect_interval_ms = 5000

    base_tag = "tcp_data"

    def __init__(self, config, sink, **kwargs):
        super().__init__(config, sink, **kwargs)
        self._sock: Optional[socket.socket] = None
        self._reader: Optional[threading.Thread] = None
        self._format = resolve_format(self.settings)
        self._csv_options = CsvOptions.from_settings(self.settings)

    @property
    def host(self) -> str:
        return str(self.settings["host"])

    @property
    def port(self) -> int:
        return int(self.settings["port"])

    def _validate(self) -> None:
        framing = str(self.settings.get("framing", "chunk")).lower()
        if framing not in FRAMING_MODES:
            raise ConfigValidationError(
                f"Invalid framing '{framing}' (allowed: {', '.join(FRAMING_MODES)})",
                missing_fields=["framing"],
            )
        try:
            self.port
        except (TypeError, ValueError):
            raise ConfigValidationError(
                f"Invalid TCP port '{self.settings.get('port')}'", missing_fields=["port"]
            ) from None

    def base_metadata(self):
        return {**super().base_metadata(), "host": self.host, "port": self.port}

    def _open(self, generation: int) -> None:
        timeout = self.interval_seconds("connectTimeout", 10000)
        logger.info("%s Connecting to %s:%d", self.log_tag, self.host, self.port)
        try:
            sock = socket.create_connection((self.host, self.port), timeout=timeout or None)
        except OSError as e:
            raise TransportError(f"Connection to {self.host}:{self.port} failed: {e}") from e

        # El timeout solo aplica al connect; la lectura bloquea hasta datos o cierre
        sock.settimeout(None)
        if self.settings.get("keepAlive", True):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)

        self._sock = sock
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(sock, generation),
            name=f"tcp-reader-{self.source_id}",
            daemon=True,
        )
        self._reader.start()
        logger.info("%s Connected to %s:%d", self.log_tag, self.host, self.port)

    def _read_loop(self, sock: socket.socket, generation: int) -> None:
        encoding = str(self.settings.get("encoding") or "utf-8")
        decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        framer = LineFramer() if str(self.settings.get("framing", "chunk")).lower() == "line" else None
        buffer_size = int(self.settings.get("bufferSize") or 4096)

        while self.is_current(generation):
            try:
                chunk = sock.recv(buffer_size)
            except OSError as e:
                self._handle_transport_error(TransportError(f"Read error: {e}"), generation)
                return
            if not chunk:
                self._handle_transport_error(TransportError("Connection closed by peer"), generation)
                return

            text = decoder.decode(chunk)
            if framer is None:
                if text:
                    self._handle_data(text, generation)
                continue
            for line in framer.feed(text):
                self._handle_data(line, generation)

    def _close(self) -> None:
        sock, self._sock = self._sock, None
        reader, self._reader = self._reader, None
        if sock is not None:
            try:
                # shutdown despierta al recv bloqueado en el thread lector
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()
        join_worker(reader)

    def process_data(self, raw: Any) -> List[Reading]:
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, (bytes, bytearray)) else str(raw)
        return text_payload_to_readings(
            text,
            source_id=self.source_id,
            timestamp=utc_now(),
            base_tag=self.base_tag,
            fmt=self._format,
            csv_options=self._csv_options,
            metadata=self.base_metadata(),
        )
