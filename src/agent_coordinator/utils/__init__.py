"""
Утилиты слоя координации.

Конфигурация импортируется напрямую из utils.config: она зависит от
конфигов компонентов в core.
"""

from .logger import get_logger, setup_logging, EventLogger
from .monitoring import TelemetryProvider, ProcessTelemetry, StaticTelemetry

__all__ = [
    "get_logger",
    "setup_logging",
    "EventLogger",
    "TelemetryProvider",
    "ProcessTelemetry",
    "StaticTelemetry"
]
