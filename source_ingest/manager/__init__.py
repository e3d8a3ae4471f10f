"""Registro de fuentes y ciclo de vida de conectores."""

from .probes import ProbeResult, probe_connection
from .source_manager import ShutdownReport, SourceManager

__all__ = ["ProbeResult", "probe_connection", "ShutdownReport", "SourceManager"]
