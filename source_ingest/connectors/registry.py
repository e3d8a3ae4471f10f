"""Registro tipo de fuente → clase de conector.

La resolución mira primero el protocolo (MQTT, Modbus, REST tienen conector
propio sea cual sea la interfaz) y luego la interfaz física.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Dict, List, Type, Union

from ..core.domain import InterfaceType, ProtocolType, SourceConfig
from ..core.errors import UnsupportedSourceError

if TYPE_CHECKING:
    from ..persistence.sink import ReadingSink
    from .base import BaseConnector

logger = logging.getLogger(__name__)

Tag = Union[str, InterfaceType, ProtocolType]


def _tag_key(tag: Tag) -> str:
    return tag.value if isinstance(tag, (InterfaceType, ProtocolType)) else str(tag).upper()


class ConnectorRegistry:
    """Mapa abierto de tags de interfaz/protocolo a clases de conector."""

    def __init__(self):
        self._classes: Dict[str, Type["BaseConnector"]] = {}

    def register(self, tag: Tag, connector_cls: Type["BaseConnector"]) -> None:
        key = _tag_key(tag)
        previous = self._classes.get(key)
        if previous is not None and previous is not connector_cls:
            logger.warning(
                "[Registry] Replacing connector for %s: %s -> %s",
                key, previous.__name__, connector_cls.__name__,
            )
        self._classes[key] = connector_cls

    def resolve(self, config: SourceConfig) -> Type["BaseConnector"]:
        """Clase de conector para una config.

        Raises:
            UnsupportedSourceError: si ni el protocolo ni la interfaz tienen conector
        """
        for tag in (config.protocol_type, config.interface_type):
            connector_cls = self._classes.get(_tag_key(tag))
            if connector_cls is not None:
                return connector_cls
        raise UnsupportedSourceError(
            f"No connector for interface {config.interface_type.value} "
            f"/ protocol {config.protocol_type.value} (source '{config.name}')",
            missing_fields=["interfaceType"],
        )

    def create(self, config: SourceConfig, sink: "ReadingSink", **kwargs) -> "BaseConnector":
        return self.resolve(config)(config, sink, **kwargs)

    def tags(self) -> List[str]:
        return sorted(self._classes)

    def __contains__(self, tag: Tag) -> bool:
        return _tag_key(tag) in self._classes


default_registry = ConnectorRegistry()


def register_connector(*tags: Tag) -> Callable[[Type["BaseConnector"]], Type["BaseConnector"]]:
    """Decorador: registra la clase en el registro por defecto."""

    def decorator(connector_cls):
        for tag in tags:
            default_registry.register(tag, connector_cls)
        return connector_cls

    return decorator
