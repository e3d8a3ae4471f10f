"""SourceManager - registro de fuentes activas y su ciclo de vida.

Objeto de contexto explícito: se construye una vez por proceso y se inyecta
(app.state en FastAPI, variable local en el CLI).

Concurrencia:
- Las mutaciones del mapa se serializan por id de fuente (lock por id).
- El mapa se publica como snapshot inmutable (copy-on-write); las lecturas
  de status no toman locks del manager.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from ..connectors import BaseConnector, ConnectorRegistry, ConnectorState, ConnectorStatus, default_registry
from ..connectors.reconnect import TimerFactory
from ..core.domain import SourceConfig
from ..core.errors import SourceNotFoundError
from ..persistence.sink import ReadingSink
from ..persistence.source_repository import SourceConfigRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShutdownReport:
    stopped: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"stopped": list(self.stopped), "failed": {str(k): v for k, v in self.failed.items()}}


class SourceManager:
    """Mantiene un conector vivo por cada fuente activa.

    Uso:
        manager = SourceManager(SourceConfigRepository(engine), SqlReadingSink(engine))
        manager.initialize()
        ...
        manager.shutdown()
    """

    def __init__(
        self,
        repository: SourceConfigRepository,
        sink: ReadingSink,
        *,
        registry: Optional[ConnectorRegistry] = None,
        timer_factory: Optional[TimerFactory] = None,
    ):
        self._repository = repository
        self._sink = sink
        self._registry = registry or default_registry
        self._timer_factory = timer_factory

        self._connectors: Mapping[int, BaseConnector] = MappingProxyType({})
        self._publish_lock = threading.Lock()
        # Un lock por id durante toda la vida del manager; nunca se desaloja
        self._id_locks: Dict[int, threading.RLock] = {}
        self._id_locks_guard = threading.Lock()

        self._init_lock = threading.Lock()
        self._init_future: Optional[Future] = None
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def repository(self) -> SourceConfigRepository:
        return self._repository

    @property
    def registry(self) -> ConnectorRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Infra interna
    # ------------------------------------------------------------------

    def _id_lock(self, source_id: int) -> threading.RLock:
        with self._id_locks_guard:
            lock = self._id_locks.get(source_id)
            if lock is None:
                lock = self._id_locks[source_id] = threading.RLock()
            return lock

    def _publish(self, source_id: int, connector: Optional[BaseConnector]) -> None:
        with self._publish_lock:
            updated = dict(self._connectors)
            if connector is None:
                updated.pop(source_id, None)
            else:
                updated[source_id] = connector
            self._connectors = MappingProxyType(updated)

    # ------------------------------------------------------------------
    # Inicialización
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Arranca todas las fuentes activas. Idempotente.

        Llamadas concurrentes comparten la misma ejecución. Si el store de
        configuración falla, la excepción se propaga y la próxima llamada
        reintenta. Los fallos de una fuente individual solo se loguean.
        """
        with self._init_lock:
            if self._initialized:
                return
            future = self._init_future
            owner = future is None
            if owner:
                future = self._init_future = Future()

        if not owner:
            future.result()
            return

        try:
            self._start_active_sources()
        except Exception as e:
            with self._init_lock:
                self._init_future = None
            future.set_exception(e)
            logger.error("[Manager] Initialization failed: %s", e)
            raise

        with self._init_lock:
            self._initialized = True
            self._init_future = None
        future.set_result(None)

    def _start_active_sources(self) -> None:
        configs = self._repository.list_active()
        logger.info("[Manager] Loading %d active data source(s)", len(configs))

        started = 0
        for config in configs:
            try:
                self.start_source(config)
                started += 1
            except Exception as e:
                logger.error(
                    "[Manager] Failed to start source '%s' (id=%s): %s", config.name, config.id, e
                )
        logger.info("[Manager] Initialized: %d/%d sources started", started, len(configs))

    # ------------------------------------------------------------------
    # Operaciones por fuente
    # ------------------------------------------------------------------

    def start_source(self, config: SourceConfig) -> BaseConnector:
        """Crea, valida y arranca el conector de una fuente.

        Si ya había un conector para ese id, se detiene antes de reemplazarlo.

        Raises:
            ConfigValidationError: config incompleta o tipo sin conector
        """
        with self._id_lock(config.id):
            previous = self._connectors.get(config.id)
            if previous is not None:
                logger.info("[Manager] Replacing connector for source id=%s", config.id)
                previous.stop()
                self._publish(config.id, None)

            connector = self._registry.create(config, self._sink, timer_factory=self._timer_factory)
            connector.initialize()
            connector.start()
            self._publish(config.id, connector)

        logger.info(
            "[Manager] Source '%s' (id=%s) registered with %s",
            config.name, config.id, type(connector).__name__,
        )
        return connector

    def stop_source(self, source_id: int) -> bool:
        """Detiene y desregistra. False si no estaba registrada."""
        with self._id_lock(source_id):
            connector = self._connectors.get(source_id)
            if connector is None:
                return False
            connector.stop()
            self._publish(source_id, None)
        logger.info("[Manager] Source id=%s stopped", source_id)
        return True

    def restart_source(self, source_id: int) -> bool:
        """stop + relectura de la config persistida + start.

        Returns:
            True si quedó arrancada; False si la fuente está inactiva
            (se detiene y no se vuelve a arrancar)

        Raises:
            SourceNotFoundError: si la fuente ya no existe en el store
            ConfigValidationError: si la config releída es inválida
        """
        with self._id_lock(source_id):
            self.stop_source(source_id)
            config = self._repository.get(source_id)
            if config is None:
                raise SourceNotFoundError(source_id)
            if not config.is_active:
                logger.info("[Manager] Source id=%s is inactive, left stopped", source_id)
                return False
            self.start_source(config)
        return True

    def remove_source(self, source_id: int) -> bool:
        """Detiene y olvida la fuente. No borra la config persistida."""
        removed = self.stop_source(source_id)
        if removed:
            logger.info("[Manager] Source id=%s removed", source_id)
        return removed

    # ------------------------------------------------------------------
    # Lecturas de estado
    # ------------------------------------------------------------------

    def get_connector(self, source_id: int) -> Optional[BaseConnector]:
        return self._connectors.get(source_id)

    def get_status(self, source_id: Optional[int] = None):
        """Status de una fuente (None si no está registrada) o de todas."""
        if source_id is None:
            return self.get_all_statuses()
        connector = self._connectors.get(source_id)
        return connector.get_status() if connector is not None else None

    def get_all_statuses(self) -> Dict[int, ConnectorStatus]:
        snapshot = self._connectors
        return {source_id: connector.get_status() for source_id, connector in snapshot.items()}

    def get_summary(self) -> Dict[str, int]:
        statuses = list(self.get_all_statuses().values())
        return {
            "total": len(statuses),
            "running": sum(1 for s in statuses if s.is_running),
            "reconnecting": sum(1 for s in statuses if s.state is ConnectorState.RECONNECT_SCHEDULED),
            "stopped": sum(1 for s in statuses if s.state is ConnectorState.STOPPED),
            "withErrors": sum(1 for s in statuses if s.last_error),
            "recordsProcessed": sum(s.records_processed for s in statuses),
        }

    def get_debug_info(self) -> Dict[str, Any]:
        snapshot = self._connectors
        return {
            "initialized": self._initialized,
            "sourceIds": sorted(snapshot),
            "connectors": {str(sid): connector.debug_info() for sid, connector in snapshot.items()},
            "sink": self._sink.stats,
            "registeredTypes": self._registry.tags(),
        }

    # ------------------------------------------------------------------
    # Apagado
    # ------------------------------------------------------------------

    def shutdown(self) -> ShutdownReport:
        """Detiene todos los conectores, tolerando fallos individuales."""
        report = ShutdownReport()
        for source_id, connector in list(self._connectors.items()):
            try:
                with self._id_lock(source_id):
                    connector.stop()
                    self._publish(source_id, None)
                report.stopped.append(source_id)
            except Exception as e:
                logger.exception("[Manager] Failed to stop source id=%s", source_id)
                report.failed[source_id] = str(e)

        with self._init_lock:
            self._initialized = False
        logger.info(
            "[Manager] Shutdown complete: %d stopped, %d failed", len(report.stopped), len(report.failed)
        )
        return report
