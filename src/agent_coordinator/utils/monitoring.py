"""
Провайдеры телеметрии для воркеров.

Датчики памяти и CPU у воркеров носят иллюстративный характер: воркер
опрашивает провайдер после каждой задачи и публикует значения в своем
WorkerStatus. Провайдер подключаемый, в тестах используется StaticTelemetry.
"""

import threading
from typing import Dict, Optional, Tuple

import psutil

from .logger import get_logger


logger = get_logger(__name__)


class TelemetryProvider:
    """Интерфейс провайдера телеметрии."""

    def sample(self, worker_id: str) -> Tuple[float, float]:
        """
        Снять показания для воркера.

        Returns:
            Пара (memory_percent, cpu_percent)
        """
        raise NotImplementedError


class ProcessTelemetry(TelemetryProvider):
    """Телеметрия текущего процесса через psutil."""

    def __init__(self, process: Optional[psutil.Process] = None):
        self._process = process or psutil.Process()
        self._lock = threading.Lock()
        # Первый вызов cpu_percent всегда возвращает 0.0
        self._process.cpu_percent(interval=None)

    def sample(self, worker_id: str) -> Tuple[float, float]:
        with self._lock:
            try:
                memory_percent = self._process.memory_percent()
                cpu_percent = self._process.cpu_percent(interval=None)
            except psutil.Error as e:
                logger.error(f"Error collecting telemetry for worker {worker_id}: {e}")
                return 0.0, 0.0

        return float(memory_percent), float(cpu_percent)


class StaticTelemetry(TelemetryProvider):
    """Детерминированная телеметрия с заданными значениями по воркерам."""

    def __init__(self, memory: float = 0.0, cpu: float = 0.0,
                 overrides: Optional[Dict[str, Tuple[float, float]]] = None):
        self.memory = memory
        self.cpu = cpu
        self._overrides: Dict[str, Tuple[float, float]] = dict(overrides or {})
        self._lock = threading.Lock()

    def set(self, worker_id: str, memory: float, cpu: float):
        """Задать показания для конкретного воркера."""
        with self._lock:
            self._overrides[worker_id] = (memory, cpu)

    def sample(self, worker_id: str) -> Tuple[float, float]:
        with self._lock:
            return self._overrides.get(worker_id, (self.memory, self.cpu))
