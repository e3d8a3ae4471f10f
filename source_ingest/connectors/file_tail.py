"""Conector de fichero: tail por posición de byte, a intervalo fijo."""

from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, List, NamedTuple, Optional

from ..core.domain import InterfaceType, Reading, utc_now
from ..core.errors import TransportError
from ..normalizers import CsvOptions, resolve_format, text_payload_to_readings
from ..normalizers.csv_rows import split_line
from .polling import PollingConnector
from .registry import register_connector

logger = logging.getLogger(__name__)

ENCODINGS = {"utf8": "utf-8", "utf-8": "utf-8", "ascii": "ascii", "binary": "latin-1", "latin1": "latin-1"}


class TextChunk(NamedTuple):
    text: str
    first_line: int = 0


@register_connector(InterfaceType.FILE)
class FileConnector(PollingConnector):
    source_kind = "FILE"
    required_fields = ("path",)
    default_poll_interval_ms = 5000
    default_reconnect_interval_ms = 5000

    base_tag = "file_data"

    def __init__(self, config, sink, **kwargs):
        super().__init__(config, sink, **kwargs)
        self._format = resolve_format(self.settings, default="raw")
        self._csv_options = CsvOptions.from_settings(self.settings)
        self._encoding = ENCODINGS.get(str(self.settings.get("encoding") or "utf8").lower(), "utf-8")
        self._position = 0
        self._line_count = 0
        self._missing_logged = False
        self._start_at_end = str(self.settings.get("startFrom", "beginning")).lower() == "end"

    @property
    def path(self) -> Path:
        return Path(str(self.settings["path"])).expanduser()

    @property
    def position(self) -> int:
        return self._position

    def base_metadata(self):
        return {**super().base_metadata(), "path": str(self.path), "format": self._format}

    def _connect(self) -> None:
        if self._start_at_end and self._position == 0 and self.path.exists():
            self._position = self.path.stat().st_size
            logger.info("%s Tailing %s from byte %d", self.log_tag, self.path, self._position)

    def read_new_data(self) -> Optional[TextChunk]:
        """Lee lo añadido desde la última posición. None si no hay nada nuevo.

        Si el fichero encoge (truncado o rotado) se vuelve a leer desde 0.
        En formatos por línea solo se consumen líneas completas.

        Raises:
            TransportError: si el fichero existe pero no se puede leer
        """
        path = self.path
        if not path.exists():
            if not self._missing_logged:
                logger.warning("%s File not found: %s", self.log_tag, path)
                self._missing_logged = True
            return None
        self._missing_logged = False

        try:
            size = path.stat().st_size
            if size < self._position:
                logger.info("%s %s shrank (%d < %d), reading from start", self.log_tag, path, size, self._position)
                self._position = 0
                self._line_count = 0
            if size == self._position:
                return None
            with path.open("rb") as handle:
                handle.seek(self._position)
                data = handle.read(size - self._position)
        except OSError as e:
            raise TransportError(f"Cannot read {path}: {e}") from e

        if self._format in ("csv", "jsonl"):
            cut = data.rfind(b"\n")
            if cut < 0:
                return None
            data = data[: cut + 1]
        self._position += len(data)

        text = data.decode(self._encoding, errors="replace")
        first_line = self._line_count
        self._line_count += text.count("\n")

        if (
            self._format == "csv"
            and self._csv_options.skip_header
            and first_line == 0
        ):
            header, _, text = text.partition("\n")
            if not self._csv_options.headers:
                columns = tuple(c.strip() for c in split_line(header.strip(), self._csv_options.delimiter))
                self._csv_options = replace(self._csv_options, headers=columns)
                logger.info("%s Using CSV header %s", self.log_tag, list(columns))
            first_line = 1

        if not text.strip():
            return None
        return TextChunk(text, first_line)

    def _poll(self, generation: int) -> None:
        chunk = self.read_new_data()
        if chunk is not None:
            self._handle_data(chunk, generation)

    def process_data(self, raw: Any) -> List[Reading]:
        if isinstance(raw, TextChunk):
            text, first_line = raw.text, raw.first_line
        else:
            text, first_line = str(raw), 0
        return text_payload_to_readings(
            text,
            source_id=self.source_id,
            timestamp=utc_now(),
            base_tag=self.base_tag,
            fmt=self._format,
            csv_options=self._csv_options,
            first_line=first_line,
            metadata=self.base_metadata(),
        )
