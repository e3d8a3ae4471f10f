"""Tests del SourceManager con un conector fake registrado en un registro propio."""

import threading
from typing import List
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from conftest import make_config
from source_ingest.connectors import BaseConnector, ConnectorRegistry, ConnectorState
from source_ingest.core.domain import InterfaceType, ProtocolType, Reading
from source_ingest.core.errors import ConfigValidationError, SourceNotFoundError, TransportError
from source_ingest.manager import SourceManager
from source_ingest.persistence import SourceConfigRepository


class FakeConnector(BaseConnector):
    """Conector sin I/O; registra eventos de ciclo de vida."""

    source_kind = "FAKE"
    required_fields = ("endpoint",)
    events: List[str] = []

    def _open(self, generation):
        if self.settings.get("fail"):
            raise TransportError("endpoint down")
        self.events.append(f"open:{self.source_id}:{id(self)}")

    def _close(self):
        self.events.append(f"close:{self.source_id}:{id(self)}")

    def stop(self):
        if self.settings.get("explodeOnStop"):
            raise RuntimeError("stuck")
        super().stop()

    def process_data(self, raw):
        return [Reading(source_id=self.source_id, tag_name="value", value=raw)]


@pytest.fixture(autouse=True)
def reset_events():
    FakeConnector.events = []


@pytest.fixture
def registry() -> ConnectorRegistry:
    reg = ConnectorRegistry()
    reg.register(InterfaceType.TCP, FakeConnector)
    return reg


@pytest.fixture
def repository(engine) -> SourceConfigRepository:
    return SourceConfigRepository(engine)


@pytest.fixture
def manager(repository, memory_sink, registry, timer_factory) -> SourceManager:
    mgr = SourceManager(repository, memory_sink, registry=registry, timer_factory=timer_factory)
    yield mgr
    mgr.shutdown()


def create_source(repository, endpoint="plc-1", is_active=True, **extra):
    return repository.create(
        name=f"src-{endpoint}",
        interface_type=InterfaceType.TCP,
        protocol_type=ProtocolType.CUSTOM,
        interface_config={"endpoint": endpoint, **extra},
        is_active=is_active,
    )


# =============================================================================
# INICIALIZACIÓN
# =============================================================================

class TestInitialize:
    def test_starts_all_active_sources(self, manager, repository):
        a = create_source(repository, "a")
        b = create_source(repository, "b")
        create_source(repository, "c", is_active=False)

        manager.initialize()

        assert set(manager.get_all_statuses()) == {a.id, b.id}
        assert all(s.is_running for s in manager.get_all_statuses().values())
        assert manager.is_initialized

    def test_is_idempotent(self, manager, repository):
        create_source(repository, "a")
        manager.initialize()
        manager.initialize()

        assert len([e for e in FakeConnector.events if e.startswith("open")]) == 1

    def test_bad_source_does_not_block_others(self, manager, repository):
        good = create_source(repository, "good")
        bad = repository.create(
            name="bad",
            interface_type=InterfaceType.TCP,
            protocol_type=ProtocolType.CUSTOM,
            interface_config={},
        )

        manager.initialize()

        assert manager.get_status(good.id).is_running
        assert manager.get_status(bad.id) is None

    def test_store_failure_propagates_and_retries(self, memory_sink, registry):
        repository = MagicMock()
        repository.list_active.side_effect = [
            OperationalError("SELECT", {}, Exception("db down")),
            [make_config(source_id=1, interface_config={"endpoint": "x"})],
        ]
        mgr = SourceManager(repository, memory_sink, registry=registry)

        with pytest.raises(OperationalError):
            mgr.initialize()
        assert not mgr.is_initialized

        mgr.initialize()
        assert mgr.is_initialized
        assert mgr.get_status(1).is_running
        mgr.shutdown()

    def test_concurrent_callers_share_one_run(self, memory_sink, registry):
        release = threading.Event()
        entered = threading.Event()
        repository = MagicMock()

        def slow_list_active():
            entered.set()
            release.wait(5)
            return []

        repository.list_active.side_effect = slow_list_active
        mgr = SourceManager(repository, memory_sink, registry=registry)

        first = threading.Thread(target=mgr.initialize)
        first.start()
        assert entered.wait(5)
        second = threading.Thread(target=mgr.initialize)
        second.start()
        release.set()
        first.join(5)
        second.join(5)

        assert repository.list_active.call_count == 1
        assert mgr.is_initialized


# =============================================================================
# OPERACIONES POR FUENTE
# =============================================================================

class TestSourceOperations:
    def test_replacing_stops_previous_instance_first(self, manager):
        config = make_config(source_id=4, interface_config={"endpoint": "x"})
        first = manager.start_source(config)
        second = manager.start_source(config)

        assert first is not second
        assert first.state is ConnectorState.STOPPED
        assert manager.get_connector(4) is second
        close_first = FakeConnector.events.index(f"close:4:{id(first)}")
        open_second = FakeConnector.events.index(f"open:4:{id(second)}")
        assert close_first < open_second

    def test_invalid_config_raises_and_is_not_registered(self, manager):
        with pytest.raises(ConfigValidationError) as exc:
            manager.start_source(make_config(source_id=5))
        assert exc.value.missing_fields == ["endpoint"]
        assert manager.get_status(5) is None

    def test_transport_failure_keeps_source_registered(self, manager, timer_factory):
        manager.start_source(make_config(source_id=6, interface_config={"endpoint": "x", "fail": True}))

        status = manager.get_status(6)
        assert status.is_running is False
        assert status.last_error == "endpoint down"
        assert len(timer_factory.pending) == 1

    def test_stop_unknown_is_noop(self, manager):
        assert manager.stop_source(404) is False

    def test_stop_source(self, manager):
        connector = manager.start_source(make_config(source_id=7, interface_config={"endpoint": "x"}))

        assert manager.stop_source(7) is True
        assert connector.state is ConnectorState.STOPPED
        assert manager.get_status(7) is None

    def test_restart_rereads_config(self, manager, repository):
        source = create_source(repository, "a")
        original = manager.start_source(source)

        assert manager.restart_source(source.id) is True

        restarted = manager.get_connector(source.id)
        assert restarted is not original
        assert original.state is ConnectorState.STOPPED
        assert restarted.is_running

    def test_restart_inactive_source_leaves_it_stopped(self, manager, repository):
        source = create_source(repository, "a")
        manager.start_source(source)
        repository.set_active(source.id, False)

        assert manager.restart_source(source.id) is False
        assert manager.get_status(source.id) is None

    def test_restart_missing_source(self, manager):
        with pytest.raises(SourceNotFoundError):
            manager.restart_source(999)

    def test_remove_keeps_persisted_config(self, manager, repository):
        source = create_source(repository, "a")
        manager.start_source(source)

        assert manager.remove_source(source.id) is True
        assert manager.get_status(source.id) is None
        assert repository.get(source.id) is not None

    def test_remove_keeps_id_lock_for_waiting_writers(self, manager):
        config = make_config(source_id=5, interface_config={"endpoint": "x"})
        manager.start_source(config)
        held = manager._id_lock(5)
        held.acquire()
        manager.remove_source(5)

        assert manager._id_lock(5) is held

        writer = threading.Thread(target=manager.start_source, args=(config,))
        writer.start()
        writer.join(0.2)
        # Bloqueado mientras el primer escritor siga dentro
        assert writer.is_alive()
        assert manager.get_status(5) is None

        held.release()
        writer.join(5)
        assert manager.get_connector(5).is_running

    def test_concurrent_starts_leave_one_connector(self, manager):
        config = make_config(source_id=8, interface_config={"endpoint": "x"})
        manager.start_source(config)
        manager.remove_source(8)

        threads = [threading.Thread(target=manager.start_source, args=(config,)) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        opened = [e for e in FakeConnector.events if e.startswith("open:8:")]
        closed = [e for e in FakeConnector.events if e.startswith("close:8:")]
        assert len(opened) - len(closed) == 1
        assert manager.get_connector(8).is_running


# =============================================================================
# STATUS / APAGADO
# =============================================================================

class TestStatusAndShutdown:
    def test_summary_and_debug_info(self, manager, memory_sink):
        manager.start_source(make_config(source_id=1, interface_config={"endpoint": "x"}))
        manager.start_source(make_config(source_id=2, interface_config={"endpoint": "y", "fail": True}))

        summary = manager.get_summary()
        debug = manager.get_debug_info()

        assert summary["total"] == 2
        assert summary["running"] == 1
        assert summary["reconnecting"] == 1
        assert debug["sourceIds"] == [1, 2]
        assert debug["registeredTypes"] == ["TCP"]
        assert debug["connectors"]["2"]["reconnect"]["pending"] is True
        assert debug["sink"] == memory_sink.stats

    def test_get_status_without_id_returns_all(self, manager):
        manager.start_source(make_config(source_id=3, interface_config={"endpoint": "x"}))
        assert list(manager.get_status()) == [3]

    def test_shutdown_tolerates_failures(self, manager):
        manager.start_source(make_config(source_id=1, interface_config={"endpoint": "x"}))
        manager.start_source(make_config(source_id=2, interface_config={"endpoint": "y", "explodeOnStop": True}))

        report = manager.shutdown()

        assert report.stopped == [1]
        assert report.failed == {2: "stuck"}
        assert not manager.is_initialized
