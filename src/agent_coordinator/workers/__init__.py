"""
Встроенные in-memory воркеры.
"""

from .communication import CallWorker, MessageWorker, ContactWorker
from .intelligence import AIWorker, SecurityWorker
from .data import BackupWorker, AnalyticsWorker
from .integration import IntegrationWorker

DEFAULT_WORKER_TYPES = (
    CallWorker,
    MessageWorker,
    ContactWorker,
    AIWorker,
    SecurityWorker,
    BackupWorker,
    AnalyticsWorker,
    IntegrationWorker,
)

__all__ = [
    "CallWorker",
    "MessageWorker",
    "ContactWorker",
    "AIWorker",
    "SecurityWorker",
    "BackupWorker",
    "AnalyticsWorker",
    "IntegrationWorker",
    "DEFAULT_WORKER_TYPES",
]
