"""
Модели задач для слоя координации.
"""

import uuid
from enum import Enum
from typing import Any, Optional, Dict
from dataclasses import dataclass, field
from datetime import datetime


class TaskStatus(Enum):
    """Статусы задач."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class TaskPriority(Enum):
    """Приоритеты задач."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    def __lt__(self, other: "TaskPriority") -> bool:
        if not isinstance(other, TaskPriority):
            return NotImplemented
        return self.value < other.value


class TaskCategory(Enum):
    """Категории задач, по одной на специализацию воркера."""
    CALL = "call"
    MESSAGE = "message"
    CONTACT = "contact"
    AI = "ai"
    SECURITY = "security"
    BACKUP = "backup"
    ANALYTICS = "analytics"
    INTEGRATION = "integration"


@dataclass
class TaskPayload:
    """Полезная нагрузка задачи: действие и его параметры."""

    action: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Task:
    """Представление задачи."""

    category: TaskCategory
    payload: TaskPayload
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    priority: TaskPriority = TaskPriority.MEDIUM
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    assigned_worker: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[Any] = None
    error: Optional[Exception] = None

    def __post_init__(self):
        """Валидация после инициализации."""
        if not isinstance(self.category, TaskCategory):
            raise ValueError(f"Unknown task category: {self.category!r}")
        if not isinstance(self.priority, TaskPriority):
            raise ValueError(f"Unknown task priority: {self.priority!r}")
        if not self.description:
            self.description = f"{self.category.value}:{self.payload.action}"

    @property
    def action(self) -> str:
        return self.payload.action

    @property
    def params(self) -> Dict[str, Any]:
        return self.payload.params


@dataclass
class TaskResult:
    """Результат координации задачи."""

    task_id: str
    success: bool
    worker_id: str
    data: Optional[Any] = None
    error: Optional[Exception] = None
    execution_time_ms: float = 0.0
    completed_at: datetime = field(default_factory=datetime.now)

    def is_success(self) -> bool:
        """Проверка успешности выполнения."""
        return self.success

    def is_failure(self) -> bool:
        """Проверка неудачного выполнения."""
        return not self.success
