from __future__ import annotations

from typing import Optional
import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.pool import StaticPool

from .config import get_settings


logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite no aplica FKs salvo que se pida por conexión.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(url: str) -> Engine:
    """Crea un engine SQLAlchemy para el store del historian.

    SQLite se usa en desarrollo y tests: los conectores escriben desde sus
    propios threads, así que se desactiva check_same_thread y, para bases
    en memoria, se comparte una única conexión (StaticPool).
    """
    parsed = make_url(url)

    if parsed.get_backend_name() == "sqlite":
        kwargs = {"connect_args": {"check_same_thread": False}}
        if parsed.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, future=True, **kwargs)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    else:
        engine = create_engine(url, pool_pre_ping=True, pool_recycle=300, future=True)

    # Log básico de parámetros de conexión (sin contraseña)
    logger.info(
        "[DB] Engine created backend=%s host=%s db=%s",
        parsed.get_backend_name(),
        parsed.host,
        parsed.database,
    )
    return engine


def check_connection(engine: Engine) -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.exception("[DB] Connection test FAILED")
        return False


def get_engine() -> Engine:
    """Engine del proceso (lazy), construido desde DATABASE_URL."""
    global _engine

    if _engine is None:
        settings = get_settings()
        _engine = create_db_engine(settings.database_url)
        if check_connection(_engine):
            logger.info("[DB] Connection test OK")
    return _engine
