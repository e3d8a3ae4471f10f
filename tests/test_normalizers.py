"""Tests de normalizadores (funciones puras, sin I/O).

Ejecutar:
    pytest tests/test_normalizers.py -v
"""

from datetime import datetime, timezone

import pytest

from source_ingest.core.domain import DataQuality
from source_ingest.core.errors import ConfigValidationError, PayloadParseError
from source_ingest.normalizers import (
    CsvOptions,
    RegisterBlock,
    coerce_number,
    csv_to_readings,
    flatten_json,
    json_to_readings,
    mqtt_message_to_readings,
    parse_gga,
    parse_json,
    parse_register_blocks,
    registers_to_readings,
    resolve_format,
    sentence_type,
    serial_line_to_readings,
    text_payload_to_readings,
    verify_checksum,
)
from source_ingest.normalizers.modbus_registers import DEFAULT_BLOCK

TS = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

# Sentencia GGA de referencia del estándar NMEA (checksum válido *47)
GGA = "$GPGGA,123519,4807.038,N,01131.000,E,1,08,0.9,545.4,M,46.9,M,,*47"


# =============================================================================
# JSON
# =============================================================================

class TestJsonFlatten:
    """Aplanado determinista de objetos JSON."""

    def test_nested_dicts_become_dot_joined_tags(self):
        data = {"a": {"b": 1, "c": {"d": "x"}}, "e": True}
        assert list(flatten_json(data)) == [("a.b", 1), ("a.c.d", "x"), ("e", True)]

    def test_lists_are_leaves(self):
        assert list(flatten_json({"values": [1, 2, 3]})) == [("values", [1, 2, 3])]

    def test_same_payload_same_tags_and_order(self):
        payload = b'{"z": 1, "a": {"m": 2, "b": 3}}'
        first = [r.tag_name for r in json_to_readings(parse_json(payload), source_id=1, timestamp=TS, base_tag="api_data")]
        second = [r.tag_name for r in json_to_readings(parse_json(payload), source_id=1, timestamp=TS, base_tag="api_data")]
        assert first == second == ["z", "a.m", "a.b"]

    def test_non_object_root_uses_base_tag(self):
        readings = json_to_readings([1, 2], source_id=3, timestamp=TS, base_tag="api_data")
        assert len(readings) == 1
        assert readings[0].tag_name == "api_data"
        assert readings[0].value == [1, 2]

    def test_field_path_in_metadata(self):
        readings = json_to_readings({"a": {"b": 1}}, source_id=1, timestamp=TS, base_tag="x")
        assert readings[0].metadata["field"] == "a.b"

    def test_invalid_json_raises_parse_error(self):
        with pytest.raises(PayloadParseError):
            parse_json("{not json")


# =============================================================================
# CSV
# =============================================================================

class TestCsv:
    """Filas CSV → una lectura por columna."""

    def test_headers_and_numeric_coercion(self):
        options = CsvOptions(headers=("temp", "state"))
        readings = csv_to_readings("21.5,on\n22,off\n", source_id=1, timestamp=TS, options=options)

        assert [(r.tag_name, r.value) for r in readings] == [
            ("temp", 21.5), ("state", "on"), ("temp", 22), ("state", "off"),
        ]
        assert readings[2].metadata["line"] == 1
        assert readings[3].metadata["column"] == 1

    def test_missing_header_falls_back_to_column_index(self):
        readings = csv_to_readings("1;2;3", source_id=1, timestamp=TS, options=CsvOptions(delimiter=";", headers=("a",)))
        assert [r.tag_name for r in readings] == ["a", "column_1", "column_2"]

    def test_first_line_offset(self):
        readings = csv_to_readings("5\n\n6", source_id=1, timestamp=TS, options=CsvOptions(), first_line=10)
        assert [r.metadata["line"] for r in readings] == [10, 12]

    @pytest.mark.parametrize(
        "cell, expected",
        [("42", 42), ("-3.5", -3.5), (" 7 ", 7), ("nan", "nan"), ("inf", "inf"), ("1_000", "1_000"), ("abc", "abc")],
    )
    def test_coerce_number(self, cell, expected):
        assert coerce_number(cell) == expected

    def test_options_from_settings(self):
        options = CsvOptions.from_settings({"delimiter": "|", "headers": "a, b", "skipHeader": True})
        assert options.delimiter == "|"
        assert options.headers == ("a", "b")
        assert options.skip_header is True


# =============================================================================
# MODBUS
# =============================================================================

class TestModbusRegisters:
    """Bloques de registros → lecturas."""

    def test_block_of_two_registers(self):
        block = RegisterBlock.from_dict({"address": 40001, "type": "holding", "length": 2, "tagName": "temp"})
        readings = registers_to_readings(block, [212, 50], source_id=9, timestamp=TS)

        assert [(r.tag_name, r.value, r.metadata["registerAddress"]) for r in readings] == [
            ("temp_0", 212, 40001),
            ("temp_1", 50, 40002),
        ]
        assert all(r.metadata["registerType"] == "holding" for r in readings)

    def test_single_register_keeps_tag_name(self):
        block = RegisterBlock.from_dict({"address": 10, "tagName": "pressure"})
        readings = registers_to_readings(block, [7], source_id=1, timestamp=TS)
        assert [(r.tag_name, r.value) for r in readings] == [("pressure", 7)]

    def test_scaling_and_offset(self):
        block = RegisterBlock.from_dict(
            {"address": 0, "tagName": "t", "scalingFactor": 0.1, "offset": -40}
        )
        reading = registers_to_readings(block, [650], source_id=1, timestamp=TS)[0]
        assert reading.value == pytest.approx(25.0)

    def test_coils_truncated_to_length(self):
        block = RegisterBlock.from_dict({"address": 0, "type": "coil", "length": 3, "tagName": "valve"})
        readings = registers_to_readings(block, [1, 0, 1, 0, 0, 0, 0, 0], source_id=1, timestamp=TS)
        assert [r.value for r in readings] == [True, False, True]

    def test_no_blocks_uses_default(self):
        assert parse_register_blocks(None) == [DEFAULT_BLOCK]

    def test_invalid_type_rejected(self):
        with pytest.raises(ConfigValidationError):
            RegisterBlock.from_dict({"address": 0, "type": "analog", "tagName": "x"})

    def test_missing_tag_name_rejected(self):
        with pytest.raises(ConfigValidationError) as exc:
            RegisterBlock.from_dict({"address": 0})
        assert "registers[].tagName" in exc.value.missing_fields


# =============================================================================
# MQTT
# =============================================================================

class TestMqttMessages:
    """Mensajes MQTT → lecturas con prefijo de topic."""

    def test_object_payload_flattened_with_topic_prefix(self):
        readings = mqtt_message_to_readings(
            "sensors/room1", b'{"temperature":21.5,"humidity":40}', source_id=5, timestamp=TS
        )
        assert [(r.tag_name, r.value) for r in readings] == [
            ("sensors/room1.temperature", 21.5),
            ("sensors/room1.humidity", 40),
        ]
        assert readings[0].metadata["topic"] == "sensors/room1"

    def test_plain_payload_keeps_raw_string(self):
        readings = mqtt_message_to_readings("plant/valve", b"OPEN", source_id=5, timestamp=TS)
        assert len(readings) == 1
        assert readings[0].tag_name == "plant/valve"
        assert readings[0].value == "OPEN"
        assert "parseError" not in readings[0].metadata

    def test_broken_json_flagged(self):
        readings = mqtt_message_to_readings("t", b'{"a": ', source_id=5, timestamp=TS)
        assert readings[0].is_diagnostic
        assert readings[0].metadata["rawMessage"] == '{"a": '


# =============================================================================
# SERIAL / NMEA
# =============================================================================

class TestNmea:
    """Sentencias NMEA 0183 y líneas serie."""

    def test_sentence_type(self):
        assert sentence_type(GGA) == "GPGGA"
        assert sentence_type("$GPRMC*00") == "GPRMC"
        assert sentence_type("hello") is None

    def test_checksum(self):
        assert verify_checksum(GGA) is True
        assert verify_checksum(GGA[:-2] + "48") is False
        assert verify_checksum("$GPGGA,1,2") is None

    def test_parse_gga_location(self):
        location = parse_gga(GGA)
        assert location.latitude == pytest.approx(48.1173)
        assert location.longitude == pytest.approx(11.516667, rel=1e-6)
        assert location.altitude == pytest.approx(545.4)

    def test_southern_western_hemispheres_negative(self):
        location = parse_gga("$GPGGA,1,3345.000,S,07030.000,W,1,08,0.9,10,M,,M,,")
        assert location.latitude == pytest.approx(-33.75)
        assert location.longitude == pytest.approx(-70.5)

    def test_gga_emits_sentence_and_coordinates(self):
        readings = serial_line_to_readings(GGA + "\r\n", source_id=2, timestamp=TS, nmea=True)
        assert [r.tag_name for r in readings] == ["GPGGA", "gps_latitude", "gps_longitude"]
        assert readings[0].value == GGA
        assert readings[1].location is not None
        assert readings[0].metadata["checksumValid"] is True
        assert all(r.quality == DataQuality.GOOD for r in readings)

    def test_gngga_also_parsed(self):
        line = "$GNGGA,123519,4807.038,N,01131.000,E,1,08,0.9,545.4,M,46.9,M,,"
        tags = [r.tag_name for r in serial_line_to_readings(line, source_id=2, timestamp=TS, nmea=True)]
        assert tags == ["GNGGA", "gps_latitude", "gps_longitude"]

    def test_checksum_mismatch_downgrades_quality(self):
        readings = serial_line_to_readings(GGA[:-2] + "00", source_id=2, timestamp=TS, nmea=True)
        assert all(r.quality == DataQuality.UNCERTAIN for r in readings)
        assert readings[0].metadata["checksumValid"] is False

    def test_sentence_allow_list(self):
        assert serial_line_to_readings(GGA, source_id=2, timestamp=TS, nmea=True, sentences=["GPRMC"]) == []

    def test_non_nmea_line_is_raw_data(self):
        readings = serial_line_to_readings("  T=21.3  \n", source_id=2, timestamp=TS)
        assert [(r.tag_name, r.value) for r in readings] == [("raw_data", "T=21.3")]

    def test_empty_line_dropped(self):
        assert serial_line_to_readings("\r\n", source_id=2, timestamp=TS, nmea=True) == []


# =============================================================================
# TEXTO (TCP/UDP/FILE)
# =============================================================================

class TestTextPayload:
    """Formato configurable para payloads de texto."""

    def test_auto_json(self):
        readings = text_payload_to_readings('{"a": 1}', source_id=1, timestamp=TS, base_tag="tcp_data")
        assert [(r.tag_name, r.value) for r in readings] == [("a", 1)]

    def test_auto_raw(self):
        readings = text_payload_to_readings("hello", source_id=1, timestamp=TS, base_tag="tcp_data")
        assert readings[0].tag_name == "tcp_data"
        assert readings[0].metadata["rawData"] == "hello"

    def test_malformed_json_becomes_diagnostic(self):
        readings = text_payload_to_readings("{oops", source_id=1, timestamp=TS, base_tag="tcp_data")
        assert len(readings) == 1
        assert readings[0].tag_name == "tcp_data_raw"
        assert readings[0].quality == DataQuality.BAD
        assert readings[0].is_diagnostic

    def test_jsonl_recovers_per_line(self):
        text = '{"a": 1}\n{bad\n{"a": 2}\n'
        readings = text_payload_to_readings(text, source_id=1, timestamp=TS, base_tag="file_data", fmt="jsonl")
        assert [r.tag_name for r in readings] == ["a", "file_data_raw", "a"]
        assert [r.metadata["line"] for r in readings] == [0, 1, 2]

    def test_resolve_format(self):
        assert resolve_format({}) == "auto"
        assert resolve_format({}, default="raw") == "raw"
        assert resolve_format({"format": "TEXT"}) == "raw"
        assert resolve_format({"delimiter": ";"}) == "csv"
        assert resolve_format({"format": "json", "delimiter": ";"}) == "json"
