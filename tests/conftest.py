"""Fixtures compartidas por la suite."""

from typing import Any, Dict, List, Optional

import pytest

from common.db import create_db_engine
from source_ingest.core.domain import SourceConfig
from source_ingest.persistence import InMemoryReadingSink, ensure_schema


class FakeTimer:
    """Sustituto de threading.Timer que solo dispara a mano."""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.fired = True
        self.function()


class FakeTimerFactory:
    def __init__(self):
        self.timers: List[FakeTimer] = []

    def __call__(self, interval, function):
        timer = FakeTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if t.started and not t.cancelled and not t.fired]


def make_config(
    source_id: int = 1,
    interface_type: str = "TCP",
    protocol_type: str = "CUSTOM",
    interface_config: Optional[Dict[str, Any]] = None,
    protocol_config: Optional[Dict[str, Any]] = None,
    custom_config: Optional[Dict[str, Any]] = None,
    name: Optional[str] = None,
    is_active: bool = True,
) -> SourceConfig:
    return SourceConfig.from_dict(
        {
            "id": source_id,
            "name": name or f"source-{source_id}",
            "interfaceType": interface_type,
            "protocolType": protocol_type,
            "interfaceConfig": interface_config or {},
            "protocolConfig": protocol_config or {},
            "customConfig": custom_config or {},
            "isActive": is_active,
        }
    )


@pytest.fixture
def timer_factory() -> FakeTimerFactory:
    return FakeTimerFactory()


@pytest.fixture
def memory_sink() -> InMemoryReadingSink:
    return InMemoryReadingSink()


@pytest.fixture
def engine():
    """SQLite en memoria con el schema creado."""
    eng = create_db_engine("sqlite:///:memory:")
    ensure_schema(eng)
    yield eng
    eng.dispose()
