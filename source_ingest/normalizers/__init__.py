"""Normalizadores: payload de protocolo → lecturas etiquetadas.

Funciones puras, sin I/O. Cada conector delega aquí su process_data.
"""

from .csv_rows import CsvOptions, coerce_number, csv_to_readings
from .json_flatten import diagnostic_reading, flatten_json, json_to_readings, parse_json
from .modbus_registers import RegisterBlock, parse_register_blocks, registers_to_readings
from .mqtt_messages import mqtt_message_to_readings
from .nmea import parse_gga, sentence_type, serial_line_to_readings, verify_checksum
from .text_payload import resolve_format, text_payload_to_readings

__all__ = [
    "CsvOptions",
    "coerce_number",
    "csv_to_readings",
    "diagnostic_reading",
    "flatten_json",
    "json_to_readings",
    "parse_json",
    "RegisterBlock",
    "parse_register_blocks",
    "registers_to_readings",
    "mqtt_message_to_readings",
    "parse_gga",
    "sentence_type",
    "serial_line_to_readings",
    "verify_checksum",
    "resolve_format",
    "text_payload_to_readings",
]
