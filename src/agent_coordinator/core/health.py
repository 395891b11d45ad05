"""
Агрегатор здоровья воркеров.
"""

import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Deque, Dict, List, Optional, Tuple
from dataclasses import dataclass
from datetime import datetime, timedelta

from .registry import WorkerRegistry
from .worker import BaseWorker
from ..models.emergency import EmergencyCategory, EmergencySeverity
from ..models.health import (
    HealthAlert,
    HealthLevel,
    HealthTier,
    PollCycle,
    SystemHealthReport,
    SystemMetrics
)
from ..models.worker import WorkerState, WorkerStatus
from ..utils.logger import get_logger
from ..exceptions import WorkerUnavailableError


logger = get_logger(__name__)

# Пороги совместимы с существующими дашбордами, менять нельзя
HEALTH_TIER_THRESHOLDS: Tuple[Tuple[float, HealthTier], ...] = (
    (0.95, HealthTier.EXCELLENT),
    (0.85, HealthTier.GOOD),
    (0.70, HealthTier.FAIR),
)


def classify_health_ratio(ratio: float) -> HealthTier:
    """Класс здоровья по доле работающих воркеров (границы включительно)."""
    for threshold, tier in HEALTH_TIER_THRESHOLDS:
        if ratio >= threshold:
            return tier
    return HealthTier.POOR


@dataclass
class HealthConfig:
    """Конфигурация агрегатора здоровья."""
    poll_interval: float = 60.0  # Штатный интервал опроса
    boosted_poll_interval: float = 10.0  # Интервал после boost_monitoring()
    poll_timeout: float = 5.0  # Таймаут опроса одного цикла
    poll_workers: int = 16  # Потоков в пуле опроса
    heartbeat_timeout: float = 180.0  # Возраст heartbeat, после которого запись отключается
    tick_interval: float = 0.5  # Гранулярность ожидания в фоновом цикле
    history_size: int = 1000  # Размер истории циклов опроса

    # Пороги общего уровня
    error_rate_error: float = 0.10
    error_rate_warning: float = 0.05
    cpu_error: float = 80.0
    cpu_warning: float = 60.0

    # Пороги алертов
    response_time_threshold_ms: float = 5000.0
    success_rate_threshold: float = 0.8
    cpu_alert_threshold: float = 80.0


class HealthAggregator:
    """Периодический опрос воркеров, классификация здоровья и алерты."""

    def __init__(self, registry: WorkerRegistry, config: Optional[HealthConfig] = None):
        self.config = config or HealthConfig()
        self._registry = registry
        self._lock = threading.Lock()

        self._maintenance = False
        self._active_tasks_provider: Optional[Callable[[], int]] = None
        self._on_alert: Optional[Callable[[HealthAlert], None]] = None

        self._active_alerts: Dict[str, HealthAlert] = {}
        self._alert_history: Deque[HealthAlert] = deque(maxlen=self.config.history_size)
        self._poll_history: Deque[PollCycle] = deque(maxlen=self.config.history_size)

        self._monitoring_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._next_poll_at = time.monotonic()

        logger.info(f"HealthAggregator initialized with config: {self.config}")

    def set_on_alert(self, callback: Callable[[HealthAlert], None]):
        """Установка callback'а для новых алертов."""
        self._on_alert = callback

    def set_active_tasks_provider(self, provider: Callable[[], int]):
        """Источник числа выполняющихся задач для отчета."""
        self._active_tasks_provider = provider

    # Фоновый цикл

    def start(self):
        """Запуск периодического опроса. Первый цикл выполняется сразу."""
        if self._monitoring_thread and self._monitoring_thread.is_alive():
            logger.warning("Health monitoring already running")
            return

        self._stop_event.clear()
        with self._lock:
            self._next_poll_at = time.monotonic()
        self._monitoring_thread = threading.Thread(
            target=self._monitoring_loop,
            name="health-monitor",
            daemon=True
        )
        self._monitoring_thread.start()
        logger.info("Health monitoring started")

    def stop(self, timeout: float = 5.0):
        """Остановка опроса."""
        self._stop_event.set()
        if self._monitoring_thread and self._monitoring_thread.is_alive():
            self._monitoring_thread.join(timeout=timeout)
            logger.info("Health monitoring stopped")
        self._monitoring_thread = None

        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            # Зависшие опросы не ждем
            executor.shutdown(wait=False)

    def is_running(self) -> bool:
        return self._monitoring_thread is not None and self._monitoring_thread.is_alive()

    def boost_monitoring(self):
        """Сократить ожидание до следующего опроса."""
        with self._lock:
            self._next_poll_at = min(
                self._next_poll_at,
                time.monotonic() + self.config.boosted_poll_interval
            )
        logger.info(f"Monitoring boosted: next poll within {self.config.boosted_poll_interval}s")

    def seconds_until_next_poll(self) -> float:
        with self._lock:
            return max(0.0, self._next_poll_at - time.monotonic())

    def _monitoring_loop(self):
        while not self._stop_event.is_set():
            if self.seconds_until_next_poll() <= 0:
                try:
                    self.poll_once()
                except Exception as e:
                    logger.error(f"Error in health monitoring: {e}")
                with self._lock:
                    self._next_poll_at = time.monotonic() + self.config.poll_interval

            remaining = self.seconds_until_next_poll()
            self._stop_event.wait(min(remaining, self.config.tick_interval))

    # Опрос

    def poll_once(self) -> PollCycle:
        """
        Один цикл опроса всех воркеров.

        Опросы идут параллельно; классификация считается только после того,
        как каждый опрос завершился или истек по таймауту. Сбой опроса одного
        воркера не прерывает остальные.
        В режиме обслуживания алерты не оцениваются.
        """
        started = time.time()
        workers = self._registry.get_workers()

        if workers:
            executor = self._get_executor()
            futures = {executor.submit(self._poll_worker, worker): worker for worker in workers}
            done, not_done = wait(futures, timeout=self.config.poll_timeout)

            for future in done:
                worker = futures[future]
                try:
                    status, response_time_ms = future.result()
                except Exception as e:
                    self._registry.mark_disconnected(worker.id, f"status poll failed: {e}")
                    continue
                self._registry.mark_connected(worker.id, status, response_time_ms)

            for future in not_done:
                worker = futures[future]
                future.cancel()
                error = WorkerUnavailableError(
                    f"Worker {worker.id} did not answer within {self.config.poll_timeout}s"
                )
                self._registry.mark_disconnected(worker.id, str(error))

        self._registry.mark_stale(self.config.heartbeat_timeout)

        connections = self._registry.get_connections()
        total = len(connections)
        healthy = sum(1 for c in connections if c.is_healthy())
        tier = classify_health_ratio(healthy / total) if total else HealthTier.POOR

        response_times = [c.performance.response_time_ms for c in connections]
        success_rates = [c.performance.success_rate for c in connections]
        cycle = PollCycle(
            tier=tier,
            connected_workers=healthy,
            total_workers=total,
            average_response_time_ms=sum(response_times) / total if total else 0.0,
            error_rate=1.0 - (sum(success_rates) / total) if total else 0.0,
            duration_ms=(time.time() - started) * 1000
        )

        with self._lock:
            self._poll_history.append(cycle)

        logger.debug(f"Health poll: {healthy}/{total} healthy, tier {tier.value}")
        if self.is_maintenance():
            logger.debug("Maintenance mode, alert evaluation skipped")
        else:
            self._evaluate_alerts(tier, total)
        return cycle

    def _get_executor(self) -> ThreadPoolExecutor:
        """Общий пул опроса, создается при первом цикле."""
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.config.poll_workers,
                    thread_name_prefix="health-poll"
                )
            return self._executor

    def _poll_worker(self, worker: BaseWorker) -> Tuple[WorkerStatus, float]:
        start_time = time.time()
        status = worker.get_status()
        return status, (time.time() - start_time) * 1000

    # Алерты

    def _evaluate_alerts(self, tier: HealthTier, total: int):
        conditions: Dict[str, HealthAlert] = {}
        config = self.config

        for connection in self._registry.get_connections():
            worker_id = connection.worker_id
            status = connection.last_status

            if not connection.is_connected():
                conditions[f"{worker_id}:disconnected"] = HealthAlert(
                    key=f"{worker_id}:disconnected",
                    message=f"Worker {worker_id} is disconnected",
                    category=EmergencyCategory.SYSTEM,
                    severity=EmergencySeverity.MEDIUM,
                    worker_id=worker_id
                )
            elif status is not None and status.state == WorkerState.ERROR:
                conditions[f"{worker_id}:error_state"] = HealthAlert(
                    key=f"{worker_id}:error_state",
                    message=f"Worker {worker_id} is in error state",
                    category=EmergencyCategory.SYSTEM,
                    severity=EmergencySeverity.MEDIUM,
                    worker_id=worker_id
                )

            if connection.performance.success_rate < config.success_rate_threshold:
                conditions[f"{worker_id}:low_success_rate"] = HealthAlert(
                    key=f"{worker_id}:low_success_rate",
                    message=(f"Worker {worker_id} success rate is "
                             f"{connection.performance.success_rate:.2f}"),
                    category=EmergencyCategory.PERFORMANCE,
                    severity=EmergencySeverity.MEDIUM,
                    worker_id=worker_id
                )

            if connection.performance.response_time_ms > config.response_time_threshold_ms:
                conditions[f"{worker_id}:slow_response"] = HealthAlert(
                    key=f"{worker_id}:slow_response",
                    message=(f"Worker {worker_id} response time is "
                             f"{connection.performance.response_time_ms:.0f}ms"),
                    category=EmergencyCategory.PERFORMANCE,
                    severity=EmergencySeverity.LOW,
                    worker_id=worker_id
                )

            if status is not None and status.cpu_usage > config.cpu_alert_threshold:
                conditions[f"{worker_id}:high_cpu"] = HealthAlert(
                    key=f"{worker_id}:high_cpu",
                    message=f"Worker {worker_id} CPU usage is {status.cpu_usage:.1f}%",
                    category=EmergencyCategory.PERFORMANCE,
                    severity=EmergencySeverity.LOW,
                    worker_id=worker_id
                )

        if total and tier == HealthTier.POOR:
            conditions["system:poor_health"] = HealthAlert(
                key="system:poor_health",
                message="System health is poor",
                category=EmergencyCategory.SYSTEM,
                severity=EmergencySeverity.HIGH
            )

        with self._lock:
            raised = [alert for key, alert in conditions.items() if key not in self._active_alerts]
            cleared = [key for key in self._active_alerts if key not in conditions]

            for alert in raised:
                self._active_alerts[alert.key] = alert
                self._alert_history.append(alert)
            for key in cleared:
                alert = self._active_alerts.pop(key)
                alert.resolved = True
                alert.resolved_at = datetime.now()

        for key in cleared:
            logger.info(f"Health alert cleared: {key}")

        for alert in raised:
            logger.warning(f"Health alert raised: {alert.message}")
            if self._on_alert:
                try:
                    self._on_alert(alert)
                except Exception as e:
                    logger.error(f"Error in alert callback for {alert.key}: {e}")

    def get_active_alerts(self) -> List[HealthAlert]:
        with self._lock:
            return list(self._active_alerts.values())

    def get_alert_history(self) -> List[HealthAlert]:
        with self._lock:
            return list(self._alert_history)

    # Запросы состояния

    def set_maintenance(self, enabled: bool):
        """Режим обслуживания на время аварийной остановки."""
        with self._lock:
            self._maintenance = enabled
        logger.info(f"Maintenance mode {'enabled' if enabled else 'disabled'}")

    def is_maintenance(self) -> bool:
        with self._lock:
            return self._maintenance

    def get_worker_statuses(self) -> List[WorkerStatus]:
        """Снимки состояния всех воркеров, без побочных эффектов."""
        statuses = []
        for worker in self._registry.get_workers():
            try:
                statuses.append(worker.get_status())
            except Exception as e:
                logger.error(f"Failed to read status of worker {worker.id}: {e}")
        return statuses

    def get_system_status(self) -> SystemHealthReport:
        """Отчет о здоровье, пересчитанный из текущих WorkerStatus."""
        statuses = self.get_worker_statuses()
        connections = {c.worker_id: c for c in self._registry.get_connections()}
        total = len(connections)

        healthy = sum(
            1 for s in statuses
            if s.is_running() and s.worker_id in connections and connections[s.worker_id].is_connected()
        )
        tier = classify_health_ratio(healthy / total) if total else HealthTier.POOR

        count = len(statuses)
        used_memory = sum(s.memory_usage for s in statuses) / count if count else 0.0
        used_cpu = sum(s.cpu_usage for s in statuses) / count if count else 0.0
        completed = sum(s.tasks_completed for s in statuses)
        errors = sum(s.errors for s in statuses)
        error_rate = errors / completed if completed > 0 else 0.0

        if self._active_tasks_provider:
            active_tasks = self._active_tasks_provider()
        else:
            active_tasks = sum(s.active_tasks for s in statuses)

        metrics = SystemMetrics(
            total_memory=100.0,
            used_memory=used_memory,
            total_cpu=100.0,
            used_cpu=used_cpu,
            active_tasks=active_tasks,
            completed_tasks=completed,
            error_rate=error_rate
        )

        return SystemHealthReport(
            overall_status=self._classify_overall(error_rate, used_cpu),
            tier=tier,
            metrics=metrics,
            connected_workers=healthy,
            total_workers=total,
            workers=statuses
        )

    def _classify_overall(self, error_rate: float, used_cpu: float) -> HealthLevel:
        if self.is_maintenance():
            return HealthLevel.MAINTENANCE
        if error_rate > self.config.error_rate_error or used_cpu > self.config.cpu_error:
            return HealthLevel.ERROR
        if error_rate > self.config.error_rate_warning or used_cpu > self.config.cpu_warning:
            return HealthLevel.WARNING
        return HealthLevel.HEALTHY

    def get_performance_history(self, since: Optional[timedelta] = None) -> List[PollCycle]:
        """История циклов опроса, опционально за последний период."""
        with self._lock:
            history = list(self._poll_history)

        if since is not None:
            cutoff = datetime.now() - since
            history = [c for c in history if c.timestamp >= cutoff]
        return history

    def __repr__(self) -> str:
        return (f"HealthAggregator(running={self.is_running()}, "
                f"alerts={len(self._active_alerts)}, cycles={len(self._poll_history)})")
