"""
Слой координации специализированных воркеров в одном процессе.

Основные компоненты:
- CoordinationSystem: сборка всех компонентов, точка входа
- TaskCoordinator: маршрутизация задач и их жизненный цикл
- HealthAggregator: опрос воркеров и классификация здоровья
- EmergencyHandler: реакция на экстренные события по серьезности
- WorkflowEngine: workflow, балансировка нагрузки и failover
"""

from .core.system import CoordinationSystem, create_default_system
from .core.worker import BaseWorker
from .core.registry import WorkerRegistry
from .core.coordinator import TaskCoordinator
from .core.health import HealthAggregator, classify_health_ratio
from .core.emergency import EmergencyHandler
from .core.workflow import WorkflowEngine
from .models.task import Task, TaskPayload, TaskResult, TaskStatus, TaskPriority, TaskCategory
from .models.emergency import Emergency, EmergencyCategory, EmergencySeverity
from .models.health import HealthTier, HealthLevel
from .utils.config import Config, load_config
from .utils.logger import get_logger, setup_logging
from .exceptions import (
    CoordinatorError,
    NoSuitableWorkerError,
    WorkerExecutionError,
    UnsupportedActionError,
    ShutdownError
)

__version__ = "1.0.0"
__author__ = "Worker Pool Team"

__all__ = [
    "CoordinationSystem",
    "create_default_system",
    "BaseWorker",
    "WorkerRegistry",
    "TaskCoordinator",
    "HealthAggregator",
    "classify_health_ratio",
    "EmergencyHandler",
    "WorkflowEngine",
    "Task",
    "TaskPayload",
    "TaskResult",
    "TaskStatus",
    "TaskPriority",
    "TaskCategory",
    "Emergency",
    "EmergencyCategory",
    "EmergencySeverity",
    "HealthTier",
    "HealthLevel",
    "Config",
    "load_config",
    "get_logger",
    "setup_logging",
    "CoordinatorError",
    "NoSuitableWorkerError",
    "WorkerExecutionError",
    "UnsupportedActionError",
    "ShutdownError"
]
