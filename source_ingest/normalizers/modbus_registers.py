"""Bloques de registros Modbus y su conversión a lecturas."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ..core.domain import Reading
from ..core.errors import ConfigValidationError

REGISTER_TYPES = ("holding", "input", "coil", "discrete")


@dataclass(frozen=True)
class RegisterBlock:
    """Bloque contiguo de registros leído en una sola petición."""
    address: int
    type: str
    length: int
    tag_name: str
    scaling_factor: Optional[float] = None
    offset: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RegisterBlock:
        missing = [k for k in ("address", "tagName") if data.get(k) is None]
        if missing:
            raise ConfigValidationError.missing([f"registers[].{k}" for k in missing])

        reg_type = str(data.get("type", "holding")).lower()
        if reg_type not in REGISTER_TYPES:
            raise ConfigValidationError(
                f"Invalid register type '{reg_type}' (allowed: {', '.join(REGISTER_TYPES)})",
                missing_fields=["registers[].type"],
            )

        length = int(data.get("length", 1))
        if length < 1:
            raise ConfigValidationError(
                f"Register length must be >= 1 (got {length})",
                missing_fields=["registers[].length"],
            )

        scaling = data.get("scalingFactor")
        offset = data.get("offset")
        return cls(
            address=int(data["address"]),
            type=reg_type,
            length=length,
            tag_name=str(data["tagName"]),
            scaling_factor=float(scaling) if scaling is not None else None,
            offset=float(offset) if offset is not None else None,
        )

    @property
    def is_bit_block(self) -> bool:
        return self.type in ("coil", "discrete")

    def scale(self, value: Any) -> Any:
        if self.is_bit_block or isinstance(value, bool):
            return bool(value)
        if self.scaling_factor is None and self.offset is None:
            return value
        factor = self.scaling_factor if self.scaling_factor is not None else 1.0
        return value * factor + (self.offset or 0.0)


# Lo que el conector original leía cuando no había bloques configurados.
DEFAULT_BLOCK = RegisterBlock(address=0, type="holding", length=10, tag_name="register")


def parse_register_blocks(raw: Optional[Iterable[Mapping[str, Any]]]) -> List[RegisterBlock]:
    blocks = [RegisterBlock.from_dict(item) for item in (raw or [])]
    return blocks or [DEFAULT_BLOCK]


def registers_to_readings(
    block: RegisterBlock,
    values: Sequence[Any],
    *,
    source_id: int,
    timestamp: datetime,
    metadata: Optional[Dict[str, Any]] = None,
) -> List[Reading]:
    """N valores → N lecturas (tag_<i>); 1 valor → 1 lectura (tag).

    Las lecturas de bits llegan rellenadas a múltiplos de 8, se truncan a
    la longitud del bloque.
    """
    metadata = metadata or {}
    values = list(values)[: block.length]

    readings = []
    for index, value in enumerate(values):
        tag = block.tag_name if block.length == 1 else f"{block.tag_name}_{index}"
        readings.append(
            Reading(
                source_id=source_id,
                tag_name=tag,
                value=block.scale(value),
                timestamp=timestamp,
                metadata={
                    **metadata,
                    "registerType": block.type,
                    "registerAddress": block.address + index,
                },
            )
        )
    return readings
