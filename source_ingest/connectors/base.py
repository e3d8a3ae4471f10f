"""BaseConnector - contrato común de todos los conectores de fuentes.

Cada protocolo (Serial, TCP, UDP, File, REST, Modbus, MQTT) implementa
_open/_close/process_data; el ciclo de vida, la reconexión, el descarte de
callbacks tardíos y el envío al sink viven aquí.

Máquina de estados:
    STOPPED → STARTING → RUNNING → (error de transporte) → RECONNECT_SCHEDULED → STARTING → ...
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Sequence

from ..core.domain import Reading, SourceConfig, utc_now
from ..core.errors import ConfigValidationError, StorageError, TransportError
from ..normalizers import diagnostic_reading
from ..persistence.sink import ReadingSink
from .reconnect import ReconnectSupervisor, TimerFactory

logger = logging.getLogger(__name__)


class ConnectorState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    RECONNECT_SCHEDULED = "reconnect_scheduled"


_CONNECTION_STATUS = {
    ConnectorState.STOPPED: "disconnected",
    ConnectorState.STARTING: "connecting",
    ConnectorState.RUNNING: "connected",
    ConnectorState.RECONNECT_SCHEDULED: "error",
}


@dataclass(frozen=True)
class ConnectorStatus:
    """Snapshot del estado en runtime de un conector (nunca se persiste)."""
    is_running: bool
    state: ConnectorState
    last_activity: Optional[datetime] = None
    last_error: Optional[str] = None
    records_processed: int = 0
    errors_count: int = 0
    reconnect_attempts: int = 0

    @property
    def connection_status(self) -> str:
        return _CONNECTION_STATUS[self.state]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isRunning": self.is_running,
            "state": self.state.value,
            "connectionStatus": self.connection_status,
            "lastActivity": self.last_activity.isoformat() if self.last_activity else None,
            "lastError": self.last_error,
            "recordsProcessed": self.records_processed,
            "errorsCount": self.errors_count,
            "reconnectAttempts": self.reconnect_attempts,
        }


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict)) and len(value) == 0:
        return True
    return False


def join_worker(thread: Optional[threading.Thread], timeout: float = 5.0) -> None:
    """Join de un thread de lectura/polling, salvo que sea el thread actual."""
    if thread is None or thread is threading.current_thread():
        return
    thread.join(timeout=timeout)
    if thread.is_alive():
        logger.warning("[Connector] Worker thread %s did not exit within %.1fs", thread.name, timeout)


class BaseConnector(ABC):
    """Conector de una fuente. Una instancia por id de fuente activa."""

    source_kind: ClassVar[str] = "BASE"
    required_fields: ClassVar[Sequence[str]] = ()
    default_reconnect_interval_ms: ClassVar[int] = 5000

    def __init__(
        self,
        config: SourceConfig,
        sink: ReadingSink,
        *,
        timer_factory: Optional[TimerFactory] = None,
    ):
        self.config = config
        self.settings: Dict[str, Any] = config.settings
        self._sink = sink

        self._lock = threading.RLock()
        # Serializa escrituras al sink con stop(): tras stop() no entra nada más
        self._ingest_lock = threading.Lock()
        self._state = ConnectorState.STOPPED
        self._generation = 0
        self._initialized = False

        self._last_activity: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._records_processed = 0
        self._errors_count = 0

        self._supervisor = ReconnectSupervisor(
            f"{self.source_kind}:{config.id}",
            self.interval_seconds("reconnectInterval", self.default_reconnect_interval_ms),
            self._reconnect,
            max_attempts=int(self.settings.get("maxReconnectAttempts") or 0),
            timer_factory=timer_factory,
        )

    # ------------------------------------------------------------------
    # Helpers de configuración
    # ------------------------------------------------------------------

    @property
    def source_id(self) -> int:
        return self.config.id

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def log_tag(self) -> str:
        return f"[{self.source_kind}]"

    @property
    def supervisor(self) -> ReconnectSupervisor:
        return self._supervisor

    def interval_seconds(self, key: str, default_ms: float) -> float:
        """Los intervalos se configuran en milisegundos, como en la capa web."""
        raw = self.settings.get(key)
        if raw is None or raw == "":
            return float(default_ms) / 1000.0
        return max(0.0, float(raw) / 1000.0)

    def base_metadata(self) -> Dict[str, Any]:
        return {"sourceType": self.source_kind}

    def get_required_fields(self) -> Sequence[str]:
        return self.required_fields

    # ------------------------------------------------------------------
    # Contrato público
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Valida la config. Sin I/O.

        Raises:
            ConfigValidationError: nombrando los campos que faltan
        """
        missing = [f for f in self.get_required_fields() if _is_blank(self.settings.get(f))]
        if missing:
            raise ConfigValidationError.missing(missing, self.name)
        self._validate()
        self._initialized = True
        logger.info("%s Initialized source '%s' (id=%s)", self.log_tag, self.name, self.source_id)

    def start(self) -> None:
        """Abre el transporte y arranca la adquisición.

        Idempotente: no-op si ya está corriendo o arrancando. Un fallo de
        transporte no se propaga, programa un reintento.
        """
        if not self._initialized:
            self.initialize()

        with self._lock:
            if self._state in (ConnectorState.RUNNING, ConnectorState.STARTING):
                return
            self._supervisor.cancel()
            self._state = ConnectorState.STARTING
            self._generation += 1
            generation = self._generation

        self._attempt_start(generation)

    def stop(self) -> None:
        """Cancela reintentos, detiene loops y cierra el transporte.

        Seguro de llamar varias veces; nunca lanza. Al retornar no se
        persiste ninguna lectura más de esta fuente.
        """
        with self._lock:
            previous = self._state
            self._state = ConnectorState.STOPPED
            self._generation += 1
            self._supervisor.cancel()

        self._safe_close()

        # Espera a que termine una escritura en curso
        with self._ingest_lock:
            pass

        if previous is not ConnectorState.STOPPED:
            logger.info("%s Stopped source '%s' (id=%s)", self.log_tag, self.name, self.source_id)

    @abstractmethod
    def process_data(self, raw: Any) -> List[Reading]:
        """Normaliza un payload crudo a lecturas. Puro, sin I/O."""

    def get_status(self) -> ConnectorStatus:
        with self._lock:
            return ConnectorStatus(
                is_running=self._state is ConnectorState.RUNNING,
                state=self._state,
                last_activity=self._last_activity,
                last_error=self._last_error,
                records_processed=self._records_processed,
                errors_count=self._errors_count,
                reconnect_attempts=self._supervisor.attempts,
            )

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._state is ConnectorState.RUNNING

    @property
    def state(self) -> ConnectorState:
        with self._lock:
            return self._state

    # ------------------------------------------------------------------
    # Hooks por protocolo
    # ------------------------------------------------------------------

    def _validate(self) -> None:
        """Validación extra específica del protocolo (sin I/O)."""

    @abstractmethod
    def _open(self, generation: int) -> None:
        """Abre el transporte y arranca el loop de adquisición.

        Raises:
            TransportError: si no se puede conectar/abrir/bindear
        """

    @abstractmethod
    def _close(self) -> None:
        """Cierra el transporte y detiene loops. Debe ser idempotente."""

    # ------------------------------------------------------------------
    # Ciclo de vida interno
    # ------------------------------------------------------------------

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation and self._state is not ConnectorState.STOPPED

    def _attempt_start(self, generation: int) -> None:
        try:
            self._open(generation)
        except TransportError as e:
            self._handle_transport_error(e, generation)
            return

        with self._lock:
            stale = generation != self._generation
            if not stale:
                self._state = ConnectorState.RUNNING
                self._last_error = None

        if stale:
            # stop() o un error llegaron mientras conectábamos
            if self.state is ConnectorState.STOPPED:
                self._safe_close()
            return

        self._supervisor.reset()
        logger.info("%s Source '%s' (id=%s) running", self.log_tag, self.name, self.source_id)

    def _reconnect(self) -> None:
        """Callback del supervisor."""
        with self._lock:
            if self._state is not ConnectorState.RECONNECT_SCHEDULED:
                return
            self._state = ConnectorState.STARTING
            self._generation += 1
            generation = self._generation
        self._attempt_start(generation)

    def _handle_transport_error(self, error: Exception, generation: int) -> None:
        """Error de conexión/lectura: cerrar y programar un único reintento."""
        with self._lock:
            if generation != self._generation or self._state is ConnectorState.STOPPED:
                return
            self._state = ConnectorState.RECONNECT_SCHEDULED
            # Invalida los loops del transporte que falló
            self._generation += 1
            self._last_error = str(error)
            self._errors_count += 1

        logger.warning(
            "%s Transport error on '%s' (id=%s): %s", self.log_tag, self.name, self.source_id, error
        )
        self._safe_close()

        with self._lock:
            if self._state is not ConnectorState.RECONNECT_SCHEDULED:
                return
            if not self._supervisor.schedule():
                self._state = ConnectorState.STOPPED

    def _safe_close(self) -> None:
        try:
            self._close()
        except Exception as e:
            logger.warning("%s Error closing transport for '%s': %s", self.log_tag, self.name, e)

    def _record_error(self, error: Any) -> None:
        with self._lock:
            self._last_error = str(error)
            self._errors_count += 1

    def _handle_data(self, raw: Any, generation: int) -> int:
        """Normaliza y persiste un payload en orden. Devuelve lecturas guardadas.

        Los payloads que llegan de un transporte viejo o tras stop() se
        descartan sin tocar el sink.
        """
        if not self.is_current(generation):
            return 0

        try:
            readings = self.process_data(raw)
        except Exception as e:
            logger.exception("%s Normalizer failed on '%s'", self.log_tag, self.name)
            readings = [
                diagnostic_reading(
                    raw if isinstance(raw, (str, bytes)) else repr(raw),
                    e,
                    source_id=self.source_id,
                    timestamp=utc_now(),
                    base_tag=self.source_kind.lower() + "_data",
                    metadata=self.base_metadata(),
                )
            ]

        stored = 0
        for reading in readings:
            with self._ingest_lock:
                if not self.is_current(generation):
                    break
                try:
                    self._sink.insert(reading)
                    stored += 1
                except StorageError as e:
                    logger.warning("%s Storage error on '%s': %s", self.log_tag, self.name, e)
                    self._record_error(e)

        with self._lock:
            self._records_processed += stored
            self._last_activity = utc_now()

        logger.debug(
            "%s Processed %d/%d readings from '%s'", self.log_tag, stored, len(readings), self.name
        )
        return stored

    def debug_info(self) -> Dict[str, Any]:
        status = self.get_status()
        return {
            "connector": type(self).__name__,
            "sourceKind": self.source_kind,
            "initialized": self._initialized,
            "generation": self._generation,
            "status": status.to_dict(),
            "reconnect": self._supervisor.stats,
        }
