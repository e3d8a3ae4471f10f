"""Conector de puerto serie (pyserial). Lectura por líneas, NMEA opcional."""

from __future__ import annotations

import codecs
import logging
import threading
from typing import Any, List, Optional

import serial

from ..core.domain import InterfaceType, ProtocolType, Reading, utc_now
from ..core.errors import ConfigValidationError, TransportError
from ..normalizers import serial_line_to_readings
from .base import BaseConnector, join_worker
from .registry import register_connector
from .tcp import LineFramer

logger = logging.getLogger(__name__)

PARITY = {
    "none": serial.PARITY_NONE,
    "even": serial.PARITY_EVEN,
    "odd": serial.PARITY_ODD,
    "mark": serial.PARITY_MARK,
    "space": serial.PARITY_SPACE,
}
STOP_BITS = {1: serial.STOPBITS_ONE, 1.5: serial.STOPBITS_ONE_POINT_FIVE, 2: serial.STOPBITS_TWO}
DATA_BITS = {5: serial.FIVEBITS, 6: serial.SIXBITS, 7: serial.SEVENBITS, 8: serial.EIGHTBITS}
FLOW_CONTROL = ("none", "hardware", "software")

# readline() devuelve como mucho cada READ_TIMEOUT para revisar el stop
READ_TIMEOUT = 1.0


@register_connector(InterfaceType.SERIAL)
class SerialConnector(BaseConnector):
    source_kind = "SERIAL"
    required_fields = ("port", "baudRate")
    default_reconnect_interval_ms = 5000

    def __init__(self, config, sink, **kwargs):
        super().__init__(config, sink, **kwargs)
        self._serial: Optional[serial.Serial] = None
        self._reader: Optional[threading.Thread] = None
        self._nmea = config.protocol_type is ProtocolType.NMEA_0183
        sentences = self.settings.get("sentences")
        self._sentences = [str(s).lstrip("$").upper() for s in sentences] if sentences else None

    def _validate(self) -> None:
        parity = str(self.settings.get("parity", "none")).lower()
        if parity not in PARITY:
            raise ConfigValidationError(f"Invalid parity '{parity}'", missing_fields=["parity"])
        for key, convert, allowed in (("stopBits", float, STOP_BITS), ("dataBits", int, DATA_BITS)):
            raw = self.settings.get(key, 1 if key == "stopBits" else 8)
            try:
                valid = convert(raw) in allowed
            except (TypeError, ValueError):
                valid = False
            if not valid:
                raise ConfigValidationError(f"Invalid {key} '{raw}'", missing_fields=[key])
        flow = str(self.settings.get("flowControl", "none")).lower()
        if flow not in FLOW_CONTROL:
            raise ConfigValidationError(
                f"Invalid flowControl '{flow}'", missing_fields=["flowControl"]
            )

    def base_metadata(self):
        return {**super().base_metadata(), "port": self.settings.get("port")}

    def _open(self, generation: int) -> None:
        port = str(self.settings["port"])
        baud_rate = int(self.settings["baudRate"])
        flow = str(self.settings.get("flowControl", "none")).lower()

        logger.info("%s Opening %s at %d baud", self.log_tag, port, baud_rate)
        try:
            handle = serial.Serial(
                port=port,
                baudrate=baud_rate,
                bytesize=DATA_BITS[int(self.settings.get("dataBits", 8))],
                parity=PARITY[str(self.settings.get("parity", "none")).lower()],
                stopbits=STOP_BITS[float(self.settings.get("stopBits", 1))],
                timeout=READ_TIMEOUT,
                xonxoff=flow == "software",
                rtscts=flow == "hardware",
            )
        except (serial.SerialException, OSError, ValueError) as e:
            raise TransportError(f"Cannot open serial port {port}: {e}") from e

        self._serial = handle
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(handle, generation),
            name=f"serial-reader-{self.source_id}",
            daemon=True,
        )
        self._reader.start()

    def _read_loop(self, handle: serial.Serial, generation: int) -> None:
        encoding = str(self.settings.get("encoding") or "utf-8")
        decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        # readline() corta en el timeout: el resto de la línea llega en la siguiente lectura
        framer = LineFramer()
        while self.is_current(generation):
            try:
                data = handle.readline()
            except (serial.SerialException, OSError, ValueError) as e:
                self._handle_transport_error(TransportError(f"Serial read error: {e}"), generation)
                return
            if not data:
                continue
            for line in framer.feed(decoder.decode(data)):
                self._handle_data(line, generation)

    def _close(self) -> None:
        handle, self._serial = self._serial, None
        reader, self._reader = self._reader, None
        if handle is None:
            join_worker(reader)
            return
        if hasattr(handle, "cancel_read"):
            handle.cancel_read()
        join_worker(reader, timeout=READ_TIMEOUT * 3)
        handle.close()

    def process_data(self, raw: Any) -> List[Reading]:
        line = raw.decode("utf-8", errors="replace") if isinstance(raw, (bytes, bytearray)) else str(raw)
        return serial_line_to_readings(
            line,
            source_id=self.source_id,
            timestamp=utc_now(),
            nmea=self._nmea,
            sentences=self._sentences,
            metadata=self.base_metadata(),
        )
