"""Base para conectores que consultan la fuente a intervalo fijo (API, File, Modbus)."""

from __future__ import annotations

import logging
import threading
from abc import abstractmethod
from typing import ClassVar, Optional

from ..core.errors import TransportError
from .base import BaseConnector, join_worker

logger = logging.getLogger(__name__)


class PollingConnector(BaseConnector):
    """Un thread de polling por conector.

    La primera consulta se hace al arrancar; después cada pollInterval ms.
    TransportError en una consulta pasa al supervisor de reconexión; otros
    errores se registran en el status y el polling continúa.
    """

    default_poll_interval_ms: ClassVar[int] = 5000

    def __init__(self, config, sink, **kwargs):
        super().__init__(config, sink, **kwargs)
        self.poll_interval = self.interval_seconds("pollInterval", self.default_poll_interval_ms)
        self._poll_thread: Optional[threading.Thread] = None
        self._poll_stop: Optional[threading.Event] = None

    def _connect(self) -> None:
        """Prepara el cliente. Por defecto no hay nada que abrir."""

    def _disconnect(self) -> None:
        """Libera el cliente."""

    @abstractmethod
    def _poll(self, generation: int) -> None:
        """Una consulta. Entrega payloads vía self._handle_data(raw, generation).

        Raises:
            TransportError: si la fuente no es alcanzable
        """

    def _open(self, generation: int) -> None:
        self._connect()
        stop_event = threading.Event()
        self._poll_stop = stop_event
        self._poll_thread = threading.Thread(
            target=self._poll_loop,
            args=(generation, stop_event),
            name=f"{self.source_kind.lower()}-poller-{self.source_id}",
            daemon=True,
        )
        self._poll_thread.start()
        logger.info(
            "%s Polling '%s' every %.1fs", self.log_tag, self.name, self.poll_interval
        )

    def _poll_loop(self, generation: int, stop_event: threading.Event) -> None:
        while not stop_event.is_set() and self.is_current(generation):
            try:
                self._poll(generation)
            except TransportError as e:
                self._handle_transport_error(e, generation)
                return
            except Exception as e:
                logger.exception("%s Poll failed for '%s'", self.log_tag, self.name)
                self._record_error(e)
            stop_event.wait(self.poll_interval)

    def _close(self) -> None:
        stop_event, self._poll_stop = self._poll_stop, None
        thread, self._poll_thread = self._poll_thread, None
        if stop_event is not None:
            stop_event.set()
        join_worker(thread)
        self._disconnect()
