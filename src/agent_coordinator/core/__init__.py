"""
Основные компоненты слоя координации.
"""

from .worker import BaseWorker, CommonAction
from .registry import WorkerRegistry
from .coordinator import TaskCoordinator, CoordinatorConfig
from .health import HealthAggregator, HealthConfig, classify_health_ratio
from .emergency import EmergencyHandler, EmergencyConfig
from .workflow import WorkflowEngine, WorkflowConfig
from .graceful_shutdown import GracefulShutdown, ShutdownConfig
from .system import CoordinationSystem, SystemState, create_default_system

__all__ = [
    "BaseWorker",
    "CommonAction",
    "WorkerRegistry",
    "TaskCoordinator",
    "CoordinatorConfig",
    "HealthAggregator",
    "HealthConfig",
    "classify_health_ratio",
    "EmergencyHandler",
    "EmergencyConfig",
    "WorkflowEngine",
    "WorkflowConfig",
    "GracefulShutdown",
    "ShutdownConfig",
    "CoordinationSystem",
    "SystemState",
    "create_default_system"
]
