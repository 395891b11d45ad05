"""
Модели воркеров и записей реестра.
"""

from enum import Enum
from typing import Optional, List, Any, TYPE_CHECKING
from dataclasses import dataclass, field
from datetime import datetime

if TYPE_CHECKING:
    from ..core.worker import BaseWorker


class WorkerState(Enum):
    """Состояния жизненного цикла воркера."""
    INITIALIZING = "initializing"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class ConnectionState(Enum):
    """Состояние связи реестра с воркером."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class WorkerStatus:
    """Снимок состояния воркера (только для чтения)."""

    worker_id: str
    name: str
    state: WorkerState
    last_activity: datetime
    memory_usage: float = 0.0
    cpu_usage: float = 0.0
    tasks_completed: int = 0
    errors: int = 0
    active_tasks: int = 0

    def is_running(self) -> bool:
        return self.state == WorkerState.RUNNING


@dataclass
class WorkerPerformance:
    """Скользящие показатели производительности воркера."""

    response_time_ms: float = 0.0
    success_rate: float = 1.0

    def apply_sample(self, response_time_ms: float, success: Optional[bool] = None):
        """Простое скользящее обновление (не оконное среднее)."""
        self.response_time_ms = (self.response_time_ms + response_time_ms) / 2
        if success is not None:
            self.success_rate = (self.success_rate + (1.0 if success else 0.0)) / 2


@dataclass
class ExecutionSample:
    """Замер выполнения задачи, ожидающий ближайшего опроса здоровья."""

    response_time_ms: float
    success: bool
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class WorkerConnection:
    """Запись реестра о подключении воркера."""

    worker: "BaseWorker"
    state: ConnectionState = ConnectionState.CONNECTED
    last_heartbeat: datetime = field(default_factory=datetime.now)
    performance: WorkerPerformance = field(default_factory=WorkerPerformance)
    last_status: Optional[WorkerStatus] = None
    assigned_workloads: List[Any] = field(default_factory=list)
    pending_samples: List[ExecutionSample] = field(default_factory=list)

    @property
    def worker_id(self) -> str:
        return self.worker.id

    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def is_healthy(self) -> bool:
        """Подключен и при последнем опросе находился в состоянии running."""
        return (self.is_connected()
                and self.last_status is not None
                and self.last_status.is_running())
