"""Conector MQTT (paho-mqtt). Suscripción a topics y normalización por mensaje."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, List, NamedTuple, Optional, Tuple, Union
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from ..core.domain import InterfaceType, ProtocolType, Reading, utc_now
from ..core.errors import ConfigValidationError, TransportError
from ..normalizers import mqtt_message_to_readings
from .base import BaseConnector
from .registry import register_connector

logger = logging.getLogger(__name__)

TLS_SCHEMES = ("mqtts", "ssl", "wss")
WS_SCHEMES = ("ws", "wss")
DEFAULT_PORTS = {"mqtt": 1883, "tcp": 1883, "mqtts": 8883, "ssl": 8883, "ws": 80, "wss": 443}


class MqttMessage(NamedTuple):
    topic: str
    payload: Union[bytes, str]


class BrokerAddress(NamedTuple):
    scheme: str
    host: str
    port: int

    @property
    def use_tls(self) -> bool:
        return self.scheme in TLS_SCHEMES

    @property
    def transport(self) -> str:
        return "websockets" if self.scheme in WS_SCHEMES else "tcp"


def parse_broker_url(url: str) -> BrokerAddress:
    """'mqtt://broker:1883' → BrokerAddress. Sin esquema se asume mqtt://."""
    if "://" not in url:
        url = f"mqtt://{url}"
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme not in DEFAULT_PORTS or not parsed.hostname:
        raise ConfigValidationError(f"Invalid brokerUrl '{url}'", missing_fields=["brokerUrl"])
    return BrokerAddress(scheme, parsed.hostname, parsed.port or DEFAULT_PORTS[scheme])


def parse_topics(raw: Any, default_qos: int = 0) -> List[Tuple[str, int]]:
    """Acepta 'a/b', 'a/b,c/d', ['a/b'] o [{'topic': 'a/b', 'qos': 1}]."""
    if isinstance(raw, str):
        raw = [t.strip() for t in raw.split(",")]
    topics = []
    for item in raw or []:
        if isinstance(item, dict):
            topic, qos = item.get("topic"), item.get("qos", default_qos)
        else:
            topic, qos = item, default_qos
        if topic:
            topics.append((str(topic), int(qos)))
    return topics


@register_connector(InterfaceType.MQTT, ProtocolType.MQTT)
class MqttConnector(BaseConnector):
    source_kind = "MQTT"
    required_fields = ("brokerUrl", "topics")
    default_reconnect_interval_ms = 5000

    def __init__(self, config, sink, **kwargs):
        super().__init__(config, sink, **kwargs)
        self._client: Optional[mqtt.Client] = None
        self.broker: Optional[BrokerAddress] = None
        self.topics: List[Tuple[str, int]] = []

    def _validate(self) -> None:
        self.broker = parse_broker_url(str(self.settings["brokerUrl"]))
        self.topics = parse_topics(self.settings["topics"], int(self.settings.get("qos", 0)))
        if not self.topics:
            raise ConfigValidationError.missing(["topics"], self.name)

    def base_metadata(self):
        return {**super().base_metadata(), "broker": self.settings.get("brokerUrl")}

    def _open(self, generation: int) -> None:
        broker = self.broker
        client_id = str(self.settings.get("clientId") or f"historian_{int(time.time() * 1000)}")
        connected = threading.Event()
        failure: List[str] = []

        client = mqtt.Client(
            client_id=client_id,
            protocol=mqtt.MQTTv311,
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            transport=broker.transport,
            clean_session=bool(self.settings.get("cleanSession", True)),
        )

        def on_connect(client, userdata, flags, rc, properties=None):
            if rc == 0:
                logger.info("[MQTT] Connected to broker %s:%d", broker.host, broker.port)
                for topic, qos in self.topics:
                    client.subscribe(topic, qos=qos)
                    logger.info("[MQTT] Subscribed to %s (qos=%d)", topic, qos)
            else:
                failure.append(f"MQTT connection refused (rc={rc})")
            connected.set()

        def on_disconnect(client, userdata, flags, rc, properties=None):
            if not self.is_current(generation):
                return
            if rc == 0:
                logger.info("[MQTT] Disconnected from broker")
                return
            self._handle_transport_error(TransportError(f"MQTT disconnected (rc={rc})"), generation)

        def on_message(client, userdata, msg):
            self._handle_data(MqttMessage(msg.topic, msg.payload), generation)

        client.on_connect = on_connect
        client.on_disconnect = on_disconnect
        client.on_message = on_message

        username = self.settings.get("username")
        if username:
            client.username_pw_set(str(username), self.settings.get("password"))
        if broker.use_tls:
            client.tls_set()

        logger.info("[MQTT] Connecting to %s:%d", broker.host, broker.port)
        try:
            client.connect(broker.host, broker.port, keepalive=int(self.settings.get("keepalive", 60)))
        except (OSError, ValueError) as e:
            raise TransportError(f"MQTT connect to {broker.host}:{broker.port} failed: {e}") from e
        client.loop_start()
        self._client = client

        if not connected.wait(self.interval_seconds("connectTimeout", 5000)):
            raise TransportError("MQTT connection timeout")
        if failure:
            raise TransportError(failure[0])

    def _close(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        # loop_stop no hace join si se llama desde el propio thread de paho
        client.loop_stop()
        client.disconnect()

    def process_data(self, raw: Any) -> List[Reading]:
        if isinstance(raw, MqttMessage):
            topic, payload = raw.topic, raw.payload
        else:
            topic, payload = raw["topic"], raw["message"]
        return mqtt_message_to_readings(
            topic,
            payload,
            source_id=self.source_id,
            timestamp=utc_now(),
            metadata=self.base_metadata(),
        )
