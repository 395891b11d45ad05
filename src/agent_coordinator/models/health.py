"""
Модели здоровья системы.
"""

import uuid
from enum import Enum
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime

from .worker import WorkerStatus
from .emergency import EmergencyCategory, EmergencySeverity


class HealthLevel(Enum):
    """Общий уровень здоровья системы."""
    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"
    MAINTENANCE = "maintenance"


class HealthTier(Enum):
    """Класс здоровья по доле работающих воркеров."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


@dataclass
class SystemMetrics:
    """Агрегированные метрики системы."""

    total_memory: float = 0.0
    used_memory: float = 0.0
    total_cpu: float = 0.0
    used_cpu: float = 0.0
    active_tasks: int = 0
    completed_tasks: int = 0
    error_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Преобразование в словарь."""
        return {
            'total_memory': self.total_memory,
            'used_memory': self.used_memory,
            'total_cpu': self.total_cpu,
            'used_cpu': self.used_cpu,
            'active_tasks': self.active_tasks,
            'completed_tasks': self.completed_tasks,
            'error_rate': self.error_rate
        }


@dataclass
class SystemHealthReport:
    """Отчет о здоровье системы. Всегда пересчитывается, не хранится."""

    overall_status: HealthLevel
    tier: HealthTier
    metrics: SystemMetrics
    connected_workers: int
    total_workers: int
    workers: List[WorkerStatus] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def health_ratio(self) -> float:
        if self.total_workers == 0:
            return 0.0
        return self.connected_workers / self.total_workers

    def to_dict(self) -> Dict[str, Any]:
        """Преобразование в словарь."""
        return {
            'overall_status': self.overall_status.value,
            'tier': self.tier.value,
            'metrics': self.metrics.to_dict(),
            'connected_workers': self.connected_workers,
            'total_workers': self.total_workers,
            'health_ratio': self.health_ratio,
            'workers': [s.worker_id for s in self.workers],
            'timestamp': self.timestamp.isoformat()
        }


@dataclass
class HealthAlert:
    """Алерт, поднятый агрегатором здоровья."""

    key: str
    message: str
    category: EmergencyCategory
    severity: EmergencySeverity
    worker_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)
    resolved: bool = False
    resolved_at: Optional[datetime] = None


@dataclass
class PollCycle:
    """Итог одного цикла опроса воркеров."""

    tier: HealthTier
    connected_workers: int
    total_workers: int
    average_response_time_ms: float
    error_rate: float
    duration_ms: float
    timestamp: datetime = field(default_factory=datetime.now)
