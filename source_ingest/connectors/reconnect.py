"""Supervisor de reconexión embebido en cada conector.

Un solo timer pendiente a la vez, intervalo constante. Sin techo de
reintentos salvo que se configure max_attempts > 0.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

TimerFactory = Callable[[float, Callable[[], None]], threading.Timer]


class ReconnectSupervisor:
    """Programa reintentos de start() tras errores de transporte.

    Uso:
        supervisor = ReconnectSupervisor("tcp:7", 5.0, connector._reconnect)
        supervisor.schedule()   # tras un error
        supervisor.cancel()     # en stop()
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        callback: Callable[[], None],
        *,
        max_attempts: int = 0,
        timer_factory: Optional[TimerFactory] = None,
    ):
        self.name = name
        self.interval_seconds = float(interval_seconds)
        self.max_attempts = int(max_attempts or 0)
        self._callback = callback
        self._timer_factory = timer_factory or threading.Timer
        self._timer: Optional[threading.Timer] = None
        self._attempts = 0
        self._scheduled_total = 0
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    @property
    def attempts(self) -> int:
        """Reintentos consecutivos desde el último arranque exitoso."""
        with self._lock:
            return self._attempts

    @property
    def exhausted(self) -> bool:
        with self._lock:
            return self.max_attempts > 0 and self._attempts >= self.max_attempts

    def schedule(self) -> bool:
        """Programa un reintento.

        Returns:
            True si quedó un timer pendiente (nuevo o ya existente),
            False si se agotaron los intentos configurados
        """
        with self._lock:
            if self._timer is not None:
                return True
            if self.max_attempts > 0 and self._attempts >= self.max_attempts:
                logger.error(
                    "[Reconnect] %s giving up after %d attempts", self.name, self._attempts
                )
                return False

            self._attempts += 1
            self._scheduled_total += 1
            timer = self._timer_factory(self.interval_seconds, self._fire)
            timer.daemon = True
            self._timer = timer

        logger.info(
            "[Reconnect] %s retry #%d in %.1fs", self.name, self._attempts, self.interval_seconds
        )
        timer.start()
        return True

    def _fire(self) -> None:
        with self._lock:
            if self._timer is None:
                # Cancelado justo antes de disparar
                return
            self._timer = None
        logger.info("[Reconnect] %s attempting reconnect", self.name)
        try:
            self._callback()
        except Exception:
            logger.exception("[Reconnect] %s reconnect callback failed", self.name)

    def cancel(self) -> None:
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def reset(self) -> None:
        """Llamado tras un arranque exitoso: reinicia el contador de intentos."""
        with self._lock:
            self._attempts = 0

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                "pending": self._timer is not None,
                "attempts": self._attempts,
                "scheduled_total": self._scheduled_total,
                "interval_seconds": self.interval_seconds,
                "max_attempts": self.max_attempts,
            }
