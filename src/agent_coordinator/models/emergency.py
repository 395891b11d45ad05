"""
Модели экстренных событий.
"""

import uuid
from enum import Enum
from typing import Optional
from dataclasses import dataclass, field
from datetime import datetime


class EmergencyCategory(Enum):
    """Категории экстренных событий."""
    SECURITY = "security"
    SYSTEM = "system"
    PERFORMANCE = "performance"
    NETWORK = "network"


class EmergencySeverity(Enum):
    """Серьезность события. Порядковая шкала, определяет реакцию."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    def __lt__(self, other: "EmergencySeverity") -> bool:
        if not isinstance(other, EmergencySeverity):
            return NotImplemented
        return self.value < other.value


@dataclass
class Emergency:
    """Экстренное событие. После создания меняются только поля разрешения."""

    category: EmergencyCategory
    severity: EmergencySeverity
    description: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    source: str = "external"
    timestamp: datetime = field(default_factory=datetime.now)
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolution: Optional[str] = None

    def resolve(self, resolution: str):
        """Пометить событие разрешенным."""
        self.resolved = True
        self.resolved_at = datetime.now()
        self.resolution = resolution
