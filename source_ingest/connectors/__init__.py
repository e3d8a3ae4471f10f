"""Conectores por protocolo.

Importar este paquete registra todos los conectores en default_registry.
"""

from .base import BaseConnector, ConnectorState, ConnectorStatus
from .file_tail import FileConnector
from .modbus import ModbusConnector
from .mqtt import MqttConnector
from .polling import PollingConnector
from .reconnect import ReconnectSupervisor
from .registry import ConnectorRegistry, default_registry, register_connector
from .rest_api import RestApiConnector
from .serial_port import SerialConnector
from .tcp import TcpConnector
from .udp import UdpConnector

__all__ = [
    "BaseConnector",
    "ConnectorState",
    "ConnectorStatus",
    "PollingConnector",
    "ReconnectSupervisor",
    "ConnectorRegistry",
    "default_registry",
    "register_connector",
    "FileConnector",
    "ModbusConnector",
    "MqttConnector",
    "RestApiConnector",
    "SerialConnector",
    "TcpConnector",
    "UdpConnector",
]
