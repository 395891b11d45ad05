"""
Модели данных для слоя координации.
"""

from .task import Task, TaskResult, TaskStatus, TaskPriority, TaskCategory, TaskPayload
from .worker import (
    WorkerStatus,
    WorkerState,
    WorkerConnection,
    WorkerPerformance,
    ConnectionState,
    ExecutionSample
)
from .emergency import Emergency, EmergencyCategory, EmergencySeverity
from .health import (
    SystemHealthReport,
    SystemMetrics,
    HealthLevel,
    HealthTier,
    HealthAlert,
    PollCycle
)
from .workflow import (
    Workflow,
    WorkflowStep,
    WorkflowStatus,
    WorkflowResult,
    StepResult,
    StepStatus,
    LoadBalanceResult,
    FailoverResult,
    AgentCoordinationResult
)

__all__ = [
    "Task",
    "TaskResult",
    "TaskStatus",
    "TaskPriority",
    "TaskCategory",
    "TaskPayload",
    "WorkerStatus",
    "WorkerState",
    "WorkerConnection",
    "WorkerPerformance",
    "ConnectionState",
    "ExecutionSample",
    "Emergency",
    "EmergencyCategory",
    "EmergencySeverity",
    "SystemHealthReport",
    "SystemMetrics",
    "HealthLevel",
    "HealthTier",
    "HealthAlert",
    "PollCycle",
    "Workflow",
    "WorkflowStep",
    "WorkflowStatus",
    "WorkflowResult",
    "StepResult",
    "StepStatus",
    "LoadBalanceResult",
    "FailoverResult",
    "AgentCoordinationResult"
]
