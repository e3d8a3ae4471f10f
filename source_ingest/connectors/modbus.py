"""Conector Modbus (TCP y RTU) sobre pymodbus. Polling por bloques de registros."""

from __future__ import annotations

import logging
from typing import Any, List, NamedTuple, Optional, Sequence, Union

from pymodbus.client import ModbusSerialClient, ModbusTcpClient
from pymodbus.exceptions import ConnectionException, ModbusException

from ..core.domain import InterfaceType, ProtocolType, Reading, utc_now
from ..core.errors import TransportError
from ..normalizers import RegisterBlock, parse_register_blocks, registers_to_readings
from .polling import PollingConnector
from .registry import register_connector

logger = logging.getLogger(__name__)


class RegisterRead(NamedTuple):
    block: RegisterBlock
    values: Sequence[Any]


@register_connector(InterfaceType.MODBUS, ProtocolType.MODBUS_TCP, ProtocolType.MODBUS_RTU)
class ModbusConnector(PollingConnector):
    """Modbus TCP por defecto; RTU si el protocolo es MODBUS_RTU sobre interfaz SERIAL."""

    source_kind = "MODBUS"
    required_fields = ("host", "port", "unitId")
    default_poll_interval_ms = 10000
    default_reconnect_interval_ms = 10000

    def __init__(self, config, sink, **kwargs):
        super().__init__(config, sink, **kwargs)
        self._client: Optional[Union[ModbusTcpClient, ModbusSerialClient]] = None
        self.blocks: List[RegisterBlock] = []
        self.is_rtu = (
            config.protocol_type is ProtocolType.MODBUS_RTU
            and config.interface_type is InterfaceType.SERIAL
        )

    def get_required_fields(self) -> Sequence[str]:
        if self.is_rtu:
            return ("port", "baudRate", "unitId")
        return self.required_fields

    @property
    def unit_id(self) -> int:
        return int(self.settings["unitId"])

    def _validate(self) -> None:
        self.blocks = parse_register_blocks(self.settings.get("registers"))

    def base_metadata(self):
        metadata = {**super().base_metadata(), "unitId": self.unit_id}
        if self.is_rtu:
            metadata["port"] = self.settings.get("port")
        else:
            metadata.update(host=self.settings.get("host"), port=int(self.settings["port"]))
        return metadata

    def _build_client(self) -> Union[ModbusTcpClient, ModbusSerialClient]:
        timeout = self.interval_seconds("timeout", 3000)
        if self.is_rtu:
            return ModbusSerialClient(
                port=str(self.settings["port"]),
                baudrate=int(self.settings["baudRate"]),
                bytesize=int(self.settings.get("dataBits", 8)),
                parity=str(self.settings.get("parity", "N"))[:1].upper(),
                stopbits=int(self.settings.get("stopBits", 1)),
                timeout=timeout,
            )
        return ModbusTcpClient(
            str(self.settings["host"]),
            port=int(self.settings["port"]),
            timeout=timeout,
        )

    def _connect(self) -> None:
        if not self.blocks:
            self.blocks = parse_register_blocks(self.settings.get("registers"))
        client = self._build_client()
        target = self.settings.get("port") if self.is_rtu else f"{self.settings['host']}:{self.settings['port']}"
        logger.info("%s Connecting to %s (unit %d)", self.log_tag, target, self.unit_id)
        if not client.connect():
            client.close()
            raise TransportError(f"Modbus connection to {target} failed")
        self._client = client

    def _disconnect(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            client.close()

    def read_block(self, block: RegisterBlock) -> Optional[RegisterRead]:
        """Lee un bloque. None si el esclavo responde con excepción Modbus.

        Raises:
            TransportError: si se pierde la conexión
        """
        client = self._client
        if client is None:
            raise TransportError("Modbus client not connected")

        readers = {
            "holding": client.read_holding_registers,
            "input": client.read_input_registers,
            "coil": client.read_coils,
            "discrete": client.read_discrete_inputs,
        }
        try:
            result = readers[block.type](block.address, count=block.length, slave=self.unit_id)
        except ConnectionException as e:
            raise TransportError(f"Modbus connection lost: {e}") from e
        except ModbusException as e:
            logger.warning("%s Read of %s@%d failed: %s", self.log_tag, block.type, block.address, e)
            self._record_error(e)
            return None

        if result.isError():
            logger.warning("%s Device error on %s@%d: %s", self.log_tag, block.type, block.address, result)
            self._record_error(f"Modbus error reading {block.type}@{block.address}: {result}")
            return None

        values = result.bits if block.is_bit_block else result.registers
        return RegisterRead(block, list(values))

    def _poll(self, generation: int) -> None:
        reads = []
        for block in self.blocks:
            read = self.read_block(block)
            if read is not None:
                reads.append(read)
        if reads:
            self._handle_data(reads, generation)

    def process_data(self, raw: Any) -> List[Reading]:
        if isinstance(raw, RegisterRead):
            raw = [raw]
        timestamp = utc_now()
        metadata = self.base_metadata()
        readings: List[Reading] = []
        for block, values in raw:
            readings.extend(
                registers_to_readings(
                    block, values, source_id=self.source_id, timestamp=timestamp, metadata=metadata
                )
            )
        return readings
