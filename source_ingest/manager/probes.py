"""Pruebas de conexión puntuales (test-connection) sin registrar la fuente."""

from __future__ import annotations

import logging
import os
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import paho.mqtt.client as mqtt
import requests
import serial
from pymodbus.client import ModbusTcpClient

from ..connectors import BaseConnector, ConnectorRegistry, default_registry
from ..core.domain import SourceConfig
from ..persistence.sink import InMemoryReadingSink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    success: bool
    message: str
    latency_ms: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "latencyMs": self.latency_ms,
            "details": dict(self.details),
        }


def _probe_api(connector, timeout: float) -> ProbeResult:
    request = connector.build_request()
    request["timeout"] = timeout
    response = requests.request(**request)
    return ProbeResult(
        success=response.ok,
        message=f"API responded with status: {response.status_code}",
        details={"statusCode": response.status_code},
    )


def _probe_tcp(connector, timeout: float) -> ProbeResult:
    host, port = connector.host, connector.port
    with socket.create_connection((host, port), timeout=timeout):
        pass
    return ProbeResult(True, f"TCP connection to {host}:{port} established")


def _probe_udp(connector, timeout: float) -> ProbeResult:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((connector.bind_host, connector.port))
    finally:
        sock.close()
    return ProbeResult(True, f"UDP port {connector.bind_host}:{connector.port} can be bound")


def _probe_mqtt(connector, timeout: float) -> ProbeResult:
    broker = connector.broker
    connected = threading.Event()
    result: Dict[str, Any] = {}

    client = mqtt.Client(
        client_id=f"historian_probe_{int(time.time() * 1000)}",
        protocol=mqtt.MQTTv311,
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        transport=broker.transport,
    )

    def on_connect(client, userdata, flags, rc, properties=None):
        result["rc"] = str(rc)
        result["ok"] = rc == 0
        connected.set()

    client.on_connect = on_connect
    username = connector.settings.get("username")
    if username:
        client.username_pw_set(str(username), connector.settings.get("password"))
    if broker.use_tls:
        client.tls_set()

    client.connect(broker.host, broker.port, keepalive=10)
    client.loop_start()
    try:
        if not connected.wait(timeout):
            return ProbeResult(False, "MQTT connection timeout")
        if not result["ok"]:
            return ProbeResult(False, f"MQTT connection refused (rc={result['rc']})")
        return ProbeResult(True, f"Connected to MQTT broker {broker.host}:{broker.port}")
    finally:
        client.loop_stop()
        client.disconnect()


def _probe_modbus(connector, timeout: float) -> ProbeResult:
    if connector.is_rtu:
        return _probe_serial(connector, timeout)
    host, port = str(connector.settings["host"]), int(connector.settings["port"])
    client = ModbusTcpClient(host, port=port, timeout=timeout)
    try:
        if not client.connect():
            return ProbeResult(False, f"Modbus connection to {host}:{port} failed")
        return ProbeResult(True, f"Modbus connection to {host}:{port} established")
    finally:
        client.close()


def _probe_serial(connector, timeout: float) -> ProbeResult:
    port = str(connector.settings["port"])
    handle = serial.Serial(port=port, baudrate=int(connector.settings["baudRate"]), timeout=timeout)
    handle.close()
    return ProbeResult(True, f"Serial port {port} opened")


def _probe_file(connector, timeout: float) -> ProbeResult:
    path = connector.path
    if not path.is_file():
        return ProbeResult(False, f"File not found: {path}")
    if not os.access(path, os.R_OK):
        return ProbeResult(False, f"File not readable: {path}")
    return ProbeResult(True, f"File {path} is readable", details={"size": path.stat().st_size})


PROBES: Dict[str, Callable[[BaseConnector, float], ProbeResult]] = {
    "API": _probe_api,
    "TCP": _probe_tcp,
    "UDP": _probe_udp,
    "MQTT": _probe_mqtt,
    "MODBUS": _probe_modbus,
    "SERIAL": _probe_serial,
    "FILE": _probe_file,
}


def probe_connection(
    config: SourceConfig,
    *,
    timeout: float = 5.0,
    registry: Optional[ConnectorRegistry] = None,
) -> ProbeResult:
    """Valida la config y prueba una conexión real, sin arrancar adquisición.

    Raises:
        ConfigValidationError: si la config está incompleta o no hay conector
    """
    connector = (registry or default_registry).create(config, InMemoryReadingSink(max_readings=0))
    connector.initialize()

    probe = PROBES.get(connector.source_kind)
    if probe is None:
        return ProbeResult(False, f"Connection test not supported for {connector.source_kind}")

    started = time.perf_counter()
    try:
        result = probe(connector, timeout)
    except Exception as e:
        logger.warning("[Probe] %s test for '%s' failed: %s", connector.source_kind, config.name, e)
        result = ProbeResult(False, f"Connection failed: {e}")

    latency_ms = round((time.perf_counter() - started) * 1000, 2)
    return ProbeResult(result.success, result.message, latency_ms, result.details)
