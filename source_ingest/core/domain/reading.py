"""Reading - unidad normalizada de dato del historian."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict, Optional


class DataQuality(IntEnum):
    """Códigos de calidad de señal (convención OPC)."""
    GOOD = 192
    UNCERTAIN = 64
    BAD = 0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    altitude: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"latitude": self.latitude, "longitude": self.longitude}
        if self.altitude is not None:
            data["altitude"] = self.altitude
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Location:
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            altitude=float(data["altitude"]) if data.get("altitude") is not None else None,
        )


@dataclass(frozen=True)
class Reading:
    """Valor etiquetado y con timestamp - modelo canónico.

    Fluye por todo el pipeline:
    Conector → Normalizador → Sink

    Inmutable una vez creada. Un payload puede producir 0..N lecturas.
    """
    source_id: int
    tag_name: str
    value: Any
    timestamp: datetime = field(default_factory=utc_now)
    quality: int = DataQuality.GOOD

    location: Optional[Location] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_diagnostic(self) -> bool:
        """True si la lectura representa un payload que no se pudo parsear."""
        return "parseError" in self.metadata

    def to_dict(self) -> Dict[str, Any]:
        """Formato JSON para la capa HTTP."""
        return {
            "sourceId": self.source_id,
            "tagName": self.tag_name,
            "value": self.value,
            "quality": int(self.quality),
            "timestamp": self.timestamp.isoformat(),
            "location": self.location.to_dict() if self.location else None,
            "metadata": dict(self.metadata),
        }
