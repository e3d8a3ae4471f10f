"""Tests de la API de control (FastAPI TestClient, SQLite en memoria)."""

import pytest
from fastapi.testclient import TestClient

from common.config import Settings
from source_ingest.core.domain import InterfaceType, ProtocolType
from source_ingest.main import create_app
from source_ingest.manager import SourceManager
from source_ingest.persistence import SourceConfigRepository


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite:///:memory:",
        log_level="INFO",
        api_host="127.0.0.1",
        api_port=8010,
        manager_autostart=True,
        probe_timeout_seconds=1.0,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def repository(engine):
    return SourceConfigRepository(engine)


@pytest.fixture
def file_source(repository, tmp_path):
    path = tmp_path / "line.log"
    path.write_text("")
    return repository.create(
        name="line log",
        interface_type=InterfaceType.FILE,
        protocol_type=ProtocolType.CUSTOM,
        interface_config={"path": str(path), "pollInterval": 60000},
    )


@pytest.fixture
def client(engine, repository, memory_sink, file_source, timer_factory):
    manager = SourceManager(repository, memory_sink, timer_factory=timer_factory)
    app = create_app(make_settings(), engine=engine, manager=manager)
    with TestClient(app) as test_client:
        yield test_client


class TestHealth:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["managerInitialized"] is True
        assert body["summary"]["total"] == 1

    def test_ready(self, client):
        assert client.get("/ready").json() == {"status": "ready"}


class TestManagerRoutes:
    def test_overview_lists_autostarted_sources(self, client, file_source):
        body = client.get("/data-sources/manager").json()

        assert [s["sourceId"] for s in body["statuses"]] == [file_source.id]
        assert body["statuses"][0]["isRunning"] is True
        assert body["summary"]["running"] == 1
        assert body["debugInfo"]["initialized"] is True

    def test_stop_then_start_action(self, client, file_source):
        stop = client.post("/data-sources/manager", json={"action": "stop", "sourceId": file_source.id})
        assert stop.status_code == 200
        assert stop.json()["success"] is True
        assert stop.json()["status"] is None

        start = client.post("/data-sources/manager", json={"action": "start", "sourceId": file_source.id})
        assert start.json()["status"]["isRunning"] is True

    def test_restart_action(self, client, file_source):
        resp = client.post("/data-sources/manager", json={"action": "restart", "sourceId": file_source.id})
        assert resp.json()["success"] is True

    def test_remove_action(self, client, file_source):
        resp = client.post("/data-sources/manager", json={"action": "remove", "sourceId": file_source.id})
        assert resp.json()["success"] is True
        assert client.get(f"/data-sources/status?source_id={file_source.id}").status_code == 404

    def test_start_with_inline_invalid_config_is_400(self, client, file_source):
        resp = client.post(
            "/data-sources/manager",
            json={
                "action": "start",
                "sourceId": file_source.id,
                "config": {"name": "plc", "interfaceType": "TCP", "protocolType": "CUSTOM", "interfaceConfig": {"host": "x"}},
            },
        )
        assert resp.status_code == 400
        assert resp.json()["missingFields"] == ["port"]

    def test_start_inline_config_without_id_is_400(self, client):
        resp = client.post(
            "/data-sources/manager",
            json={
                "action": "start",
                "config": {"name": "log", "interfaceType": "FILE", "protocolType": "CUSTOM", "interfaceConfig": {"path": "/tmp/x.log"}},
            },
        )
        assert resp.status_code == 400
        assert client.get("/data-sources/manager").json()["summary"]["total"] == 1

    def test_start_inline_config_for_unpersisted_id_is_404(self, client, tmp_path):
        resp = client.post(
            "/data-sources/manager",
            json={
                "action": "start",
                "config": {
                    "id": 77,
                    "name": "log",
                    "interfaceType": "FILE",
                    "protocolType": "CUSTOM",
                    "interfaceConfig": {"path": str(tmp_path / "x.log")},
                },
            },
        )
        assert resp.status_code == 404
        assert client.get("/data-sources/status?source_id=77").status_code == 404

    def test_unknown_source_is_404(self, client):
        resp = client.post("/data-sources/manager", json={"action": "restart", "sourceId": 999})
        assert resp.status_code == 404

    def test_source_id_required(self, client):
        resp = client.post("/data-sources/manager", json={"action": "stop"})
        assert resp.status_code == 400

    def test_unknown_action_rejected(self, client):
        resp = client.post("/data-sources/manager", json={"action": "explode", "sourceId": 1})
        assert resp.status_code == 422


class TestSourceRoutes:
    def test_status_single_and_all(self, client, file_source):
        single = client.get(f"/data-sources/status?source_id={file_source.id}").json()
        assert single["sourceId"] == file_source.id
        assert single["connectionStatus"] == "connected"

        all_statuses = client.get("/data-sources/status").json()["statuses"]
        assert len(all_statuses) == 1

    def test_start_stop_by_path(self, client, file_source):
        assert client.post(f"/data-sources/{file_source.id}/stop").json()["success"] is True
        assert client.post(f"/data-sources/{file_source.id}/stop").json()["success"] is False
        resp = client.post(f"/data-sources/{file_source.id}/start")
        assert resp.json()["status"]["isRunning"] is True

    def test_start_unknown_by_path(self, client):
        assert client.post("/data-sources/4242/start").status_code == 404

    def test_test_connection_file(self, client, tmp_path):
        path = tmp_path / "probe.csv"
        path.write_text("a,b\n")
        resp = client.post(
            "/data-sources/test-connection",
            json={"interfaceType": "FILE", "protocolType": "CUSTOM", "interfaceConfig": {"path": str(path)}},
        )
        body = resp.json()
        assert resp.status_code == 200
        assert body["success"] is True
        assert body["latencyMs"] is not None

    def test_test_connection_missing_fields(self, client):
        resp = client.post(
            "/data-sources/test-connection",
            json={"interfaceType": "MQTT", "protocolType": "MQTT", "interfaceConfig": {}},
        )
        assert resp.status_code == 400
        assert set(resp.json()["missingFields"]) == {"brokerUrl", "topics"}

    def test_test_connection_unsupported(self, client):
        resp = client.post(
            "/data-sources/test-connection",
            json={"interfaceType": "USB", "protocolType": "HART"},
        )
        assert resp.status_code == 400
