"""Store de configuración de fuentes (tabla data_sources).

El CRUD completo pertenece a la capa web; el núcleo solo necesita leer las
fuentes activas y una fuente por id. create/set_active/delete existen para
seeding y tests.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

from ..core.domain import InterfaceType, ProtocolType, SourceConfig
from .codec import dumps_json, loads_json

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, name, description, interface_type, interface_config,
    protocol_type, protocol_config, custom_config, is_active, user_id
"""


def _row_to_config(row: Mapping[str, Any]) -> SourceConfig:
    return SourceConfig.from_dict(
        {
            "id": row["id"],
            "name": row["name"],
            "description": row["description"],
            "interface_type": row["interface_type"],
            "protocol_type": row["protocol_type"],
            "interface_config": loads_json(row["interface_config"]) or {},
            "protocol_config": loads_json(row["protocol_config"]) or {},
            "custom_config": loads_json(row["custom_config"]) or {},
            "is_active": bool(row["is_active"]),
            "user_id": row["user_id"],
        }
    )


class SourceConfigRepository:
    """Lectura de configuraciones persistidas."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def list_active(self) -> List[SourceConfig]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(f"SELECT {_COLUMNS} FROM data_sources WHERE is_active = :active ORDER BY id"),
                {"active": True},
            ).mappings().all()

        configs = []
        for row in rows:
            try:
                configs.append(_row_to_config(row))
            except Exception:
                # Una fila corrupta no debe impedir cargar las demás
                logger.exception("[Sources] Skipping unreadable data_sources row id=%s", row["id"])
        return configs

    def get(self, source_id: int) -> Optional[SourceConfig]:
        with self._engine.connect() as conn:
            row = conn.execute(
                text(f"SELECT {_COLUMNS} FROM data_sources WHERE id = :id"),
                {"id": int(source_id)},
            ).mappings().first()
        return _row_to_config(row) if row is not None else None

    def create(
        self,
        *,
        name: str,
        interface_type: InterfaceType,
        protocol_type: ProtocolType,
        interface_config: Optional[Dict[str, Any]] = None,
        protocol_config: Optional[Dict[str, Any]] = None,
        custom_config: Optional[Dict[str, Any]] = None,
        is_active: bool = True,
        user_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> SourceConfig:
        with self._engine.begin() as conn:
            new_id = conn.execute(
                text("""
                    INSERT INTO data_sources (
                        name, description, interface_type, interface_config,
                        protocol_type, protocol_config, custom_config, is_active, user_id
                    ) VALUES (
                        :name, :description, :interface_type, :interface_config,
                        :protocol_type, :protocol_config, :custom_config, :is_active, :user_id
                    )
                    RETURNING id
                """),
                {
                    "name": name,
                    "description": description,
                    "interface_type": InterfaceType(interface_type).value,
                    "interface_config": dumps_json(interface_config or {}),
                    "protocol_type": ProtocolType(protocol_type).value,
                    "protocol_config": dumps_json(protocol_config or {}),
                    "custom_config": dumps_json(custom_config or {}),
                    "is_active": bool(is_active),
                    "user_id": user_id,
                },
            ).scalar_one()

        logger.info("[Sources] Created data source id=%s name=%s", new_id, name)
        config = self.get(int(new_id))
        assert config is not None
        return config

    def set_active(self, source_id: int, is_active: bool) -> bool:
        with self._engine.begin() as conn:
            result = conn.execute(
                text("UPDATE data_sources SET is_active = :active WHERE id = :id"),
                {"active": bool(is_active), "id": int(source_id)},
            )
        return result.rowcount > 0

    def delete(self, source_id: int) -> bool:
        with self._engine.begin() as conn:
            result = conn.execute(
                text("DELETE FROM data_sources WHERE id = :id"),
                {"id": int(source_id)},
            )
        return result.rowcount > 0
