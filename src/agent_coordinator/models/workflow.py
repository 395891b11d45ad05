"""
Модели workflow и результатов интеграционных операций.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime

from .task import TaskCategory


class WorkflowStatus(Enum):
    """Статусы workflow."""
    ACTIVE = "active"
    STOPPED = "stopped"


class StepStatus(Enum):
    """Статусы шага workflow."""
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class WorkflowStep:
    """Шаг workflow: целевая категория воркера и действие."""

    step_id: str
    category: TaskCategory
    action: str


@dataclass
class Workflow:
    """Предопределенная последовательность шагов."""

    id: str
    name: str
    steps: List[WorkflowStep] = field(default_factory=list)
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    execution_count: int = 0
    last_executed: Optional[datetime] = None
    last_result_status: Optional[str] = None


@dataclass
class StepResult:
    """Результат одного шага."""

    step_id: str
    status: StepStatus
    worker_id: Optional[str] = None
    result: Optional[Any] = None
    error: Optional[str] = None


@dataclass
class WorkflowResult:
    """Результат выполнения workflow."""

    workflow_id: str
    status: StepStatus
    steps: List[StepResult]
    compiled: Dict[str, Any]
    execution_time_ms: float = 0.0

    def is_success(self) -> bool:
        return self.status == StepStatus.COMPLETED


@dataclass
class LoadBalanceResult:
    """Результат балансировки: вся нагрузка назначается одному воркеру."""

    success: bool
    target_worker_id: Optional[str]
    distribution: Dict[str, Any]
    loads: Dict[str, float]


@dataclass
class FailoverResult:
    """Результат переключения на резервный воркер."""

    success: bool
    failed_worker_id: str
    backup_worker_id: str
    recovery_time_ms: float
    rerouted_categories: List[TaskCategory] = field(default_factory=list)
    transferred_workloads: int = 0


@dataclass
class AgentCoordinationResult:
    """Результат выполнения одной задачи на нескольких воркерах."""

    success: bool
    results: List[Dict[str, Any]]
    errors: List[str]
    execution_time_ms: float
