"""
Поэтапное завершение работы системы координации.
"""

import signal
import threading
import time
from typing import Callable, List, Optional
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..utils.logger import get_logger
from ..exceptions import ShutdownError


logger = get_logger(__name__)


class ShutdownPhase(Enum):
    """Фазы завершения работы."""
    INITIATED = "initiated"
    STOPPING_INTAKE = "stopping_intake"
    DRAINING_TASKS = "draining_tasks"
    STOPPING_WORKERS = "stopping_workers"
    COMPLETED = "completed"


@dataclass
class ShutdownConfig:
    """Конфигурация graceful shutdown."""
    drain_timeout: float = 10.0  # Сколько ждать завершения выполняющихся задач
    poll_interval: float = 0.1  # Период проверки счетчика задач
    cancel_on_timeout: bool = True  # Отменять незавершенные задачи по таймауту
    signal_handling: bool = False  # Обработка SIGTERM/SIGINT (только из главного потока)


@dataclass
class ShutdownStatus:
    """Статус завершения работы."""
    phase: ShutdownPhase
    start_time: datetime
    tasks_cancelled: int = 0
    workers_failed: List[str] = field(default_factory=list)
    cleanup_callbacks_executed: int = 0
    error_count: int = 0
    completed: bool = False


class GracefulShutdown:
    """Менеджер поэтапной остановки."""

    def __init__(self, config: Optional[ShutdownConfig] = None):
        self.config = config or ShutdownConfig()
        self._lock = threading.Lock()
        self._initiated = threading.Event()
        self._completed = threading.Event()
        self._status: Optional[ShutdownStatus] = None
        self._callbacks: List[Callable[[], None]] = []
        self._on_signal: Optional[Callable[[], None]] = None

        if self.config.signal_handling:
            self._register_signal_handlers()

    def _register_signal_handlers(self):
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating graceful shutdown")
            if self._on_signal is not None:
                self._on_signal()
            else:
                self.initiate_shutdown()

        try:
            signal.signal(signal.SIGTERM, signal_handler)
            signal.signal(signal.SIGINT, signal_handler)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not register signal handlers: {e}")

    def set_signal_callback(self, callback: Callable[[], None]):
        """Действие по сигналу (обычно полная остановка системы)."""
        self._on_signal = callback

    def initiate_shutdown(self) -> ShutdownStatus:
        with self._lock:
            if self._status and not self._status.completed:
                logger.warning("Shutdown already in progress")
                return self._status

            self._initiated.set()
            self._completed.clear()
            self._status = ShutdownStatus(phase=ShutdownPhase.INITIATED, start_time=datetime.now())

        logger.info("Graceful shutdown initiated")
        return self._status

    def execute_shutdown(
        self,
        stop_intake: Optional[Callable[[], None]] = None,
        count_running: Optional[Callable[[], int]] = None,
        cancel_running: Optional[Callable[[], int]] = None,
        stop_workers: Optional[Callable[[], List[str]]] = None
    ) -> ShutdownStatus:
        """
        Выполнение фаз остановки.

        Args:
            stop_intake: остановка фоновых циклов и приема задач
            count_running: число выполняющихся задач
            cancel_running: отмена оставшихся задач, возвращает число отмененных
            stop_workers: остановка воркеров, возвращает id неостановленных

        Raises:
            ShutdownError: остановка не была инициирована
        """
        status = self._status
        if status is None:
            raise ShutdownError("Shutdown not initiated")

        status.phase = ShutdownPhase.STOPPING_INTAKE
        logger.info("Phase 1: Stopping task intake")
        self._run_phase(status, stop_intake)

        status.phase = ShutdownPhase.DRAINING_TASKS
        logger.info("Phase 2: Draining running tasks")
        if count_running is not None and not self._drain(status, count_running):
            if self.config.cancel_on_timeout and cancel_running is not None:
                cancelled = self._run_phase(status, cancel_running)
                status.tasks_cancelled = cancelled or 0
                logger.warning(f"Cancelled {status.tasks_cancelled} tasks still running after drain timeout")

        status.phase = ShutdownPhase.STOPPING_WORKERS
        logger.info("Phase 3: Stopping workers")
        failed = self._run_phase(status, stop_workers)
        status.workers_failed = list(failed or [])

        for callback in list(self._callbacks):
            if self._run_phase(status, callback, is_cleanup=True) is not False:
                status.cleanup_callbacks_executed += 1

        status.phase = ShutdownPhase.COMPLETED
        status.completed = True
        self._completed.set()

        elapsed = (datetime.now() - status.start_time).total_seconds()
        logger.info(f"Graceful shutdown completed in {elapsed:.2f}s with {status.error_count} errors")
        return status

    def _run_phase(self, status: ShutdownStatus, callback, is_cleanup: bool = False):
        if callback is None:
            return None
        try:
            return callback()
        except Exception as e:
            status.error_count += 1
            kind = "cleanup callback" if is_cleanup else f"phase {status.phase.value}"
            logger.error(f"Error in {kind}: {e}")
            return False

    def _drain(self, status: ShutdownStatus, count_running: Callable[[], int]) -> bool:
        deadline = time.monotonic() + self.config.drain_timeout
        while time.monotonic() < deadline:
            try:
                running = count_running()
            except Exception as e:
                status.error_count += 1
                logger.error(f"Error checking running tasks: {e}")
                return False

            if running == 0:
                logger.info("All running tasks completed")
                return True

            logger.debug(f"Waiting for {running} running tasks to complete")
            time.sleep(self.config.poll_interval)

        logger.warning(f"Task drain timeout ({self.config.drain_timeout}s) exceeded")
        return False

    def add_cleanup_callback(self, callback: Callable[[], None]):
        self._callbacks.append(callback)

    def remove_cleanup_callback(self, callback: Callable[[], None]):
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass

    def is_shutdown_initiated(self) -> bool:
        return self._initiated.is_set()

    def is_shutdown_completed(self) -> bool:
        return self._completed.is_set()

    def get_status(self) -> Optional[ShutdownStatus]:
        return self._status

    def wait_for_completion(self, timeout: Optional[float] = None) -> bool:
        """True если остановка завершена (или не начиналась), False если таймаут."""
        if self._status is None:
            return True
        return self._completed.wait(timeout)

    def reset(self):
        """Сброс состояния для повторного запуска системы."""
        with self._lock:
            self._initiated.clear()
            self._completed.clear()
            self._status = None

    def __repr__(self) -> str:
        if self._status:
            return f"GracefulShutdown(phase={self._status.phase.value})"
        return "GracefulShutdown(not_initiated)"
