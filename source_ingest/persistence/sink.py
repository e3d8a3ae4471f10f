"""Sink de persistencia de lecturas (append-only).

Contrato estrecho visto desde el núcleo: insert(reading) -> None, o
StorageError. El núcleo loguea el error y sigue con la siguiente lectura.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

from ..core.domain import Location, Reading
from ..core.errors import StorageError
from .codec import dump_timestamp, dumps_json, load_timestamp, loads_json

logger = logging.getLogger(__name__)


class ReadingSink(ABC):
    """Interface común para los destinos de lecturas normalizadas."""

    @abstractmethod
    def insert(self, reading: Reading) -> None:
        """Persiste una lectura.

        Raises:
            StorageError: si la escritura falla
        """

    @property
    def stats(self) -> Dict[str, Any]:
        return {}


class SqlReadingSink(ReadingSink):
    """Escribe en la tabla data_points vía SQLAlchemy.

    Una transacción por lectura: un fallo pierde solo esa lectura.
    """

    def __init__(self, engine: Engine):
        self._engine = engine
        self._lock = threading.Lock()
        self._inserted = 0
        self._failed = 0

    def insert(self, reading: Reading) -> None:
        try:
            # orjson rechaza enteros de más de 64 bits
            params = {
                "source_id": reading.source_id,
                "tag_name": reading.tag_name,
                "value": dumps_json(reading.value),
                "quality": int(reading.quality),
                "timestamp": dump_timestamp(reading.timestamp),
                "location": dumps_json(reading.location.to_dict()) if reading.location else None,
                "metadata": dumps_json(reading.metadata) if reading.metadata else None,
            }
            with self._engine.begin() as conn:
                conn.execute(
                    text("""
                        INSERT INTO data_points (
                            source_id, tag_name, value, quality, timestamp, location, metadata
                        ) VALUES (
                            :source_id, :tag_name, :value, :quality, :timestamp, :location, :metadata
                        )
                    """),
                    params,
                )
        except Exception as e:
            with self._lock:
                self._failed += 1
            raise StorageError(
                f"Insert failed for source={reading.source_id} tag={reading.tag_name}: {e}"
            ) from e

        with self._lock:
            self._inserted += 1

    def fetch_readings(
        self,
        source_id: int,
        tag_name: Optional[str] = None,
        limit: int = 1000,
    ) -> List[Reading]:
        """Lee lecturas persistidas en orden de llegada."""
        sql = """
            SELECT source_id, tag_name, value, quality, timestamp, location, metadata
            FROM data_points
            WHERE source_id = :source_id
        """
        params: Dict[str, Any] = {"source_id": source_id, "limit": int(limit)}
        if tag_name is not None:
            sql += " AND tag_name = :tag_name"
            params["tag_name"] = tag_name
        sql += " ORDER BY id LIMIT :limit"

        with self._engine.connect() as conn:
            rows = conn.execute(text(sql), params).mappings().all()

        return [
            Reading(
                source_id=int(row["source_id"]),
                tag_name=row["tag_name"],
                value=loads_json(row["value"]),
                quality=int(row["quality"]),
                timestamp=load_timestamp(row["timestamp"]),
                location=Location.from_dict(loads_json(row["location"])) if row["location"] else None,
                metadata=loads_json(row["metadata"]) or {},
            )
            for row in rows
        ]

    @property
    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {"sink": "sql", "inserted": self._inserted, "failed": self._failed}


class InMemoryReadingSink(ReadingSink):
    """Sink en memoria para desarrollo y tests (sin BD)."""

    def __init__(self, max_readings: int = 100_000):
        self._max_readings = max_readings
        self._readings: List[Reading] = []
        self._lock = threading.Lock()

    def insert(self, reading: Reading) -> None:
        with self._lock:
            if len(self._readings) >= self._max_readings:
                raise StorageError(f"In-memory sink full ({self._max_readings} readings)")
            self._readings.append(reading)

    def readings(self, source_id: Optional[int] = None) -> List[Reading]:
        with self._lock:
            if source_id is None:
                return list(self._readings)
            return [r for r in self._readings if r.source_id == source_id]

    def clear(self) -> None:
        with self._lock:
            self._readings.clear()

    @property
    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {"sink": "memory", "stored": len(self._readings)}
