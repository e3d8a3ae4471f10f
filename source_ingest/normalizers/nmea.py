"""Líneas serie y sentencias NMEA 0183.

Formato GGA (campos separados por coma):
    $GPGGA,hhmmss.ss,llll.ll,a,yyyyy.yy,a,q,nn,h.h,alt,M,...*hh
"""

from __future__ import annotations

from datetime import datetime
from functools import reduce
from typing import Any, Collection, Dict, List, Optional

from ..core.domain import DataQuality, Location, Reading

GGA_SENTENCES = ("GPGGA", "GNGGA")


def sentence_type(line: str) -> Optional[str]:
    """'$GPGGA,...' → 'GPGGA'. None si no es una sentencia NMEA."""
    if not line.startswith("$"):
        return None
    body = line[1:].split("*", 1)[0]
    return body.split(",", 1)[0] or None


def verify_checksum(line: str) -> Optional[bool]:
    """XOR de los caracteres entre '$' y '*'. None si no trae checksum."""
    if "*" not in line:
        return None
    body, _, checksum = line[1:].partition("*")
    checksum = checksum.strip()[:2]
    if len(checksum) != 2:
        return False
    computed = reduce(lambda acc, ch: acc ^ ord(ch), body, 0)
    try:
        return computed == int(checksum, 16)
    except ValueError:
        return False


def nmea_coordinate(value: str, hemisphere: str) -> Optional[float]:
    """Grados+minutos (ddmm.mmmm / dddmm.mmmm) a grados decimales."""
    if not value:
        return None
    try:
        raw = float(value)
    except ValueError:
        return None
    degrees = int(raw // 100)
    minutes = raw - degrees * 100
    decimal = degrees + minutes / 60.0
    if hemisphere.upper() in ("S", "W"):
        decimal = -decimal
    return decimal


def parse_gga(line: str) -> Optional[Location]:
    fields = line.split("*", 1)[0].split(",")
    if len(fields) < 6:
        return None

    latitude = nmea_coordinate(fields[2], fields[3])
    longitude = nmea_coordinate(fields[4], fields[5])
    if latitude is None or longitude is None:
        return None

    altitude = None
    if len(fields) > 9 and fields[9]:
        try:
            altitude = float(fields[9])
        except ValueError:
            altitude = None
    return Location(latitude=latitude, longitude=longitude, altitude=altitude)


def serial_line_to_readings(
    line: str,
    *,
    source_id: int,
    timestamp: datetime,
    nmea: bool = False,
    sentences: Optional[Collection[str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> List[Reading]:
    """Una línea recibida por el puerto serie → 0..3 lecturas."""
    line = line.strip()
    if not line:
        return []
    metadata = metadata or {}

    kind = sentence_type(line) if nmea else None
    if kind is None:
        return [
            Reading(
                source_id=source_id,
                tag_name="raw_data",
                value=line,
                timestamp=timestamp,
                metadata={**metadata, "rawData": line},
            )
        ]

    allowed = {s.lstrip("$").upper() for s in sentences} if sentences else None
    if allowed is not None and kind.upper() not in allowed:
        return []

    checksum_ok = verify_checksum(line)
    quality = DataQuality.UNCERTAIN if checksum_ok is False else DataQuality.GOOD
    sentence_meta = {**metadata, "sentenceType": kind}
    if checksum_ok is not None:
        sentence_meta["checksumValid"] = checksum_ok

    readings = [
        Reading(
            source_id=source_id,
            tag_name=kind,
            value=line,
            timestamp=timestamp,
            quality=quality,
            metadata=sentence_meta,
        )
    ]

    if kind.upper() in GGA_SENTENCES:
        location = parse_gga(line)
        if location is not None:
            for tag, value in (("gps_latitude", location.latitude), ("gps_longitude", location.longitude)):
                readings.append(
                    Reading(
                        source_id=source_id,
                        tag_name=tag,
                        value=value,
                        timestamp=timestamp,
                        quality=quality,
                        location=location,
                        metadata=dict(sentence_meta),
                    )
                )
    return readings
