from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _default_env_file() -> str:
    # .env en la raíz del repo, compartido con la capa web del historian.
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / ".env")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str
    log_level: str

    api_host: str
    api_port: int

    manager_autostart: bool
    probe_timeout_seconds: float


def get_settings() -> Settings:
    # Carga el .env (si existe) pero las variables reales del entorno siempre ganan.
    env_file = os.getenv("INGEST_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    database_url = os.getenv("DATABASE_URL", "sqlite:///historian.db")
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    api_host = os.getenv("API_HOST", "0.0.0.0")
    api_port = int(os.getenv("API_PORT", "8010"))

    # Si es False, la API arranca sin levantar las fuentes activas (útil en dev).
    manager_autostart = _env_bool("MANAGER_AUTOSTART", True)
    probe_timeout_seconds = float(os.getenv("PROBE_TIMEOUT_SECONDS", "5"))

    return Settings(
        database_url=database_url,
        log_level=log_level,
        api_host=api_host,
        api_port=api_port,
        manager_autostart=manager_autostart,
        probe_timeout_seconds=probe_timeout_seconds,
    )
