"""DDL mínimo del store del historian (data_sources + data_points).

Seguro de llamar varias veces. Las columnas JSON se guardan como texto
serializado con orjson para que SQLite y PostgreSQL se comporten igual.
"""

from __future__ import annotations

import logging
from typing import Dict, List

from sqlalchemy import text
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)


_SQLITE_DDL: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS data_sources (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        description TEXT,
        interface_type TEXT NOT NULL,
        interface_config TEXT NOT NULL DEFAULT '{}',
        protocol_type TEXT NOT NULL,
        protocol_config TEXT NOT NULL DEFAULT '{}',
        custom_config TEXT NOT NULL DEFAULT '{}',
        is_active BOOLEAN NOT NULL DEFAULT 1,
        user_id INTEGER,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS data_points (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        source_id INTEGER NOT NULL REFERENCES data_sources(id) ON DELETE CASCADE,
        tag_name TEXT NOT NULL,
        value TEXT NOT NULL,
        quality INTEGER NOT NULL DEFAULT 192,
        timestamp TEXT NOT NULL,
        location TEXT,
        metadata TEXT
    )
    """,
]

_POSTGRES_DDL: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS data_sources (
        id SERIAL PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        description TEXT,
        interface_type VARCHAR(50) NOT NULL,
        interface_config TEXT NOT NULL DEFAULT '{}',
        protocol_type VARCHAR(50) NOT NULL,
        protocol_config TEXT NOT NULL DEFAULT '{}',
        custom_config TEXT NOT NULL DEFAULT '{}',
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        user_id INTEGER,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS data_points (
        id BIGSERIAL PRIMARY KEY,
        source_id INTEGER NOT NULL REFERENCES data_sources(id) ON DELETE CASCADE,
        tag_name VARCHAR(255) NOT NULL,
        value TEXT NOT NULL,
        quality INTEGER NOT NULL DEFAULT 192,
        timestamp TIMESTAMPTZ NOT NULL,
        location TEXT,
        metadata TEXT
    )
    """,
]

_INDEXES: List[str] = [
    "CREATE INDEX IF NOT EXISTS data_sources_is_active_idx ON data_sources (is_active)",
    "CREATE INDEX IF NOT EXISTS data_points_source_tag_time_idx "
    "ON data_points (source_id, tag_name, timestamp)",
]

_DDL_BY_DIALECT: Dict[str, List[str]] = {
    "sqlite": _SQLITE_DDL,
    "postgresql": _POSTGRES_DDL,
}


def ensure_schema(engine: Engine) -> None:
    """Crea las tablas si no existen."""
    dialect = engine.dialect.name
    statements = _DDL_BY_DIALECT.get(dialect)
    if statements is None:
        raise ValueError(f"Unsupported database dialect: {dialect}")

    logger.info("[Schema] Ensuring historian tables exist (dialect=%s)", dialect)
    with engine.begin() as conn:
        for stmt in statements + _INDEXES:
            conn.execute(text(stmt))
