"""
Система координации: сборка компонентов в единый объект.
"""

import threading
from enum import Enum
from typing import Any, Dict, List, Optional

from .coordinator import TaskCoordinator
from .emergency import EmergencyHandler
from .graceful_shutdown import GracefulShutdown, ShutdownStatus
from .health import HealthAggregator
from .registry import WorkerRegistry
from .worker import BaseWorker
from .workflow import WorkflowEngine
from ..models.emergency import Emergency
from ..models.health import PollCycle, SystemHealthReport
from ..models.task import Task, TaskResult, TaskStatus
from ..models.worker import WorkerStatus
from ..models.workflow import (
    AgentCoordinationResult,
    FailoverResult,
    LoadBalanceResult,
    WorkflowResult
)
from ..utils.config import Config
from ..utils.logger import get_logger, get_log_metrics, setup_logging
from ..utils.monitoring import ProcessTelemetry, StaticTelemetry, TelemetryProvider
from ..workers import DEFAULT_WORKER_TYPES, IntegrationWorker
from ..exceptions import CoordinatorError, ShutdownError


logger = get_logger(__name__)


class SystemState(Enum):
    """Состояния системы."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class CoordinationSystem:
    """Реестр, координатор, мониторинг, экстренные события и workflow вместе."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()
        self._lock = threading.Lock()
        self._state = SystemState.STOPPED

        self._registry = WorkerRegistry()
        self._coordinator = TaskCoordinator(self._registry, self.config.coordinator)
        self._aggregator = HealthAggregator(self._registry, self.config.health)
        self._emergency = EmergencyHandler(
            self._registry,
            self._coordinator,
            self._aggregator,
            self.config.emergency
        )
        self._engine = WorkflowEngine(self._registry, self._aggregator, self.config.workflow)
        self._graceful_shutdown = GracefulShutdown(self.config.shutdown)

        self._setup_callbacks()

        logger.info("CoordinationSystem initialized")

    def _setup_callbacks(self):
        """Связи между компонентами."""
        self._aggregator.set_on_alert(self._emergency.handle_alert)
        self._aggregator.set_active_tasks_provider(self._coordinator.active_task_count)
        self._graceful_shutdown.set_signal_callback(self.stop)

    # Воркеры

    def register_worker(self, worker: BaseWorker) -> BaseWorker:
        self._registry.register(worker)
        if isinstance(worker, IntegrationWorker):
            worker.attach_engine(self._engine)
        return worker

    # Жизненный цикл

    def start(self):
        """Запуск воркеров и фоновых циклов."""
        with self._lock:
            if self._state != SystemState.STOPPED:
                raise CoordinatorError(f"System is not stopped (current state: {self._state.value})")
            self._state = SystemState.STARTING

        logger.info("Starting CoordinationSystem...")
        self._graceful_shutdown.reset()

        failed = self._registry.start_all()
        if failed:
            logger.warning(f"Workers failed to start: {failed}")
        self._coordinator.resume()

        self._aggregator.start()
        if self.config.coordinator.auto_process_critical:
            self._coordinator.start()

        with self._lock:
            self._state = SystemState.RUNNING
        logger.info(f"CoordinationSystem started with {len(self._registry)} workers")

    def stop(self) -> Optional[ShutdownStatus]:
        """Поэтапная остановка: фоновые циклы, дренаж задач, воркеры."""
        with self._lock:
            if self._state != SystemState.RUNNING:
                logger.debug(f"Stop ignored in state {self._state.value}")
                return None
            self._state = SystemState.STOPPING

        logger.info("Stopping CoordinationSystem...")
        self._graceful_shutdown.initiate_shutdown()
        status = self._graceful_shutdown.execute_shutdown(
            stop_intake=self._stop_background,
            count_running=self._coordinator.active_task_count,
            cancel_running=self._cancel_running,
            stop_workers=self._registry.stop_all
        )

        with self._lock:
            self._state = SystemState.STOPPED
        logger.info("CoordinationSystem stopped")
        return status

    def _stop_background(self):
        self._coordinator.stop()
        self._aggregator.stop()
        self._emergency.cancel_pending_recovery()

    def _cancel_running(self) -> int:
        running = [t for t in self._coordinator.get_task_queue() if t.status == TaskStatus.RUNNING]
        return sum(1 for task in running if self._coordinator.cancel(task.id, reason="shutdown"))

    def is_running(self) -> bool:
        return self._state == SystemState.RUNNING

    @property
    def state(self) -> SystemState:
        return self._state

    # Задачи

    def coordinate(self, task: Task) -> TaskResult:
        """Синхронная координация задачи. Исключения наружу не выходят."""
        if self._graceful_shutdown.is_shutdown_initiated():
            return TaskResult(
                task_id=task.id,
                success=False,
                worker_id=task.assigned_worker or "unknown",
                error=ShutdownError("System is shutting down")
            )
        return self._coordinator.coordinate(task)

    def submit(self, task: Task) -> str:
        if self._graceful_shutdown.is_shutdown_initiated():
            raise ShutdownError("System is shutting down")
        return self._coordinator.submit(task)

    def process_pending(self) -> List[TaskResult]:
        return self._coordinator.process_pending()

    def cancel(self, task_id: str, reason: str = "") -> bool:
        return self._coordinator.cancel(task_id, reason)

    def get_task(self, task_id: str) -> Task:
        return self._coordinator.get_task(task_id)

    def get_task_queue(self) -> List[Task]:
        return self._coordinator.get_task_queue()

    def restart_worker(self, worker_id: str) -> bool:
        return self._coordinator.restart_worker(worker_id)

    # Здоровье

    def poll_health(self) -> PollCycle:
        return self._aggregator.poll_once()

    def get_system_status(self) -> SystemHealthReport:
        return self._aggregator.get_system_status()

    def get_worker_statuses(self) -> List[WorkerStatus]:
        return self._aggregator.get_worker_statuses()

    # Экстренные события

    def raise_emergency(self, emergency: Emergency) -> bool:
        return self._emergency.raise_emergency(emergency)

    def get_emergency_logs(self):
        return self._emergency.get_emergency_logs()

    # Workflow и failover

    def execute_workflow(self, workflow_id: str, data: Optional[Dict[str, Any]] = None) -> WorkflowResult:
        return self._engine.execute_workflow(workflow_id, data)

    def load_balance(self, workload: Any) -> LoadBalanceResult:
        return self._engine.load_balance(workload)

    def failover(self, failed_worker_id: str) -> FailoverResult:
        return self._engine.failover(failed_worker_id)

    def revert_failover(self, failed_worker_id: str):
        return self._engine.revert_failover(failed_worker_id)

    def coordinate_agents(self, worker_ids: List[str], task: Task) -> AgentCoordinationResult:
        return self._engine.coordinate_agents(worker_ids, task)

    # Метрики

    def get_metrics(self) -> Dict[str, Any]:
        return {
            'state': self._state.value,
            'coordinator': self._coordinator.get_metrics(),
            'registry': self._registry.get_registry_stats(),
            'workflows': self._engine.get_workflow_metrics(),
            'active_emergencies': len(self._emergency.get_active_emergencies()),
            'log_metrics': get_log_metrics()
        }

    # Доступ к компонентам

    @property
    def registry(self) -> WorkerRegistry:
        return self._registry

    @property
    def coordinator(self) -> TaskCoordinator:
        return self._coordinator

    @property
    def aggregator(self) -> HealthAggregator:
        return self._aggregator

    @property
    def emergency_handler(self) -> EmergencyHandler:
        return self._emergency

    @property
    def engine(self) -> WorkflowEngine:
        return self._engine

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

    def __repr__(self) -> str:
        return f"CoordinationSystem(state={self._state.value}, workers={len(self._registry)})"


def create_default_system(
    config: Optional[Config] = None,
    telemetry: Optional[TelemetryProvider] = None,
    configure_logging: bool = False
) -> CoordinationSystem:
    """
    Система с восемью встроенными воркерами (по одному на категорию).

    Args:
        config: Конфигурация (по умолчанию Config())
        telemetry: Общий провайдер телеметрии для воркеров
        configure_logging: Настроить корневой логгер по config.log_level
    """
    config = config or Config()
    config.validate()

    if configure_logging:
        setup_logging(level=config.log_level, log_file=config.log_file or None)

    if telemetry is None:
        telemetry = StaticTelemetry() if config.telemetry == 'static' else ProcessTelemetry()

    system = CoordinationSystem(config)
    for worker_cls in DEFAULT_WORKER_TYPES:
        system.register_worker(worker_cls(telemetry=telemetry))

    return system
