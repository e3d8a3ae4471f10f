"""SourceConfig - descriptor persistido de una fuente de datos."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from ..errors import ConfigValidationError


class InterfaceType(str, Enum):
    """Capa física / de comunicación."""
    SERIAL = "SERIAL"
    TCP = "TCP"
    UDP = "UDP"
    FILE = "FILE"
    API = "API"
    MODBUS = "MODBUS"
    MQTT = "MQTT"
    USB = "USB"


class ProtocolType(str, Enum):
    """Estándar de datos que viaja sobre la interfaz."""
    MODBUS_RTU = "MODBUS_RTU"
    MODBUS_TCP = "MODBUS_TCP"
    OPC_UA = "OPC_UA"
    MQTT = "MQTT"
    NMEA_0183 = "NMEA_0183"
    HART = "HART"
    ANALOG_4_20MA = "ANALOG_4_20MA"
    ANALOG_0_5V = "ANALOG_0_5V"
    API_REST = "API_REST"
    CUSTOM = "CUSTOM"
    OSI_PI = "OSI_PI"


def _coerce_enum(enum_cls, raw: Any, field_name: str):
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw).strip().upper())
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ConfigValidationError(
            f"Invalid {field_name} '{raw}' (allowed: {allowed})",
            missing_fields=[field_name],
        ) from None


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass(frozen=True)
class SourceConfig:
    """Configuración de una fuente: interfaz + protocolo + config libre.

    Los diccionarios de config los interpreta cada conector. Los conectores
    leen `settings`, la vista combinada de los tres.
    """
    id: int
    name: str
    interface_type: InterfaceType
    protocol_type: ProtocolType
    interface_config: Dict[str, Any] = field(default_factory=dict)
    protocol_config: Dict[str, Any] = field(default_factory=dict)
    custom_config: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    user_id: Optional[int] = None
    description: Optional[str] = None

    @property
    def settings(self) -> Dict[str, Any]:
        # Prioridad: interfaz > protocolo > custom
        merged: Dict[str, Any] = {}
        merged.update(self.custom_config or {})
        merged.update(self.protocol_config or {})
        merged.update(self.interface_config or {})
        return merged

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SourceConfig:
        """Construye desde un dict camelCase (API) o snake_case (BD).

        Raises:
            ConfigValidationError: si faltan id/tipos o los enums son inválidos
        """
        missing = [
            name for name, keys in (
                ("id", ("id",)),
                ("interfaceType", ("interfaceType", "interface_type")),
                ("protocolType", ("protocolType", "protocol_type")),
            )
            if _pick(data, *keys) is None
        ]
        if missing:
            raise ConfigValidationError.missing(missing, str(data.get("name", "")))

        user_id = _pick(data, "userId", "user_id")
        return cls(
            id=int(data["id"]),
            name=str(data.get("name") or f"source-{data['id']}"),
            interface_type=_coerce_enum(
                InterfaceType, _pick(data, "interfaceType", "interface_type"), "interfaceType"
            ),
            protocol_type=_coerce_enum(
                ProtocolType, _pick(data, "protocolType", "protocol_type"), "protocolType"
            ),
            interface_config=dict(_pick(data, "interfaceConfig", "interface_config", default={})),
            protocol_config=dict(_pick(data, "protocolConfig", "protocol_config", default={})),
            custom_config=dict(_pick(data, "customConfig", "custom_config", default={})),
            is_active=bool(_pick(data, "isActive", "is_active", default=True)),
            user_id=int(user_id) if user_id is not None else None,
            description=data.get("description"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "interfaceType": self.interface_type.value,
            "protocolType": self.protocol_type.value,
            "interfaceConfig": dict(self.interface_config),
            "protocolConfig": dict(self.protocol_config),
            "customConfig": dict(self.custom_config),
            "isActive": self.is_active,
            "userId": self.user_id,
        }
