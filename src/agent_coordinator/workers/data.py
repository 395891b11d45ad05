"""
Воркеры данных: резервные копии и аналитика.
"""

import copy
import uuid
from collections import Counter
from enum import Enum
from typing import Any, Dict, List
from datetime import datetime

from ..core.worker import BaseWorker
from ..models.task import Task, TaskCategory


class BackupAction(Enum):
    CREATE_BACKUP = "create_backup"
    RESTORE_BACKUP = "restore_backup"
    GET_BACKUP_HISTORY = "get_backup_history"
    DELETE_BACKUP = "delete_backup"


class BackupWorker(BaseWorker):
    """Снимки произвольных данных в памяти."""

    category = TaskCategory.BACKUP
    actions = BackupAction
    default_name = "Backup Worker"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._backups: Dict[str, Dict[str, Any]] = {}

    def _build_handlers(self):
        return {
            BackupAction.CREATE_BACKUP: self._create_backup,
            BackupAction.RESTORE_BACKUP: self._restore_backup,
            BackupAction.GET_BACKUP_HISTORY: self._get_backup_history,
            BackupAction.DELETE_BACKUP: self._delete_backup
        }

    def _create_backup(self, task: Task) -> Dict[str, Any]:
        backup_id = str(uuid.uuid4())
        self._backups[backup_id] = {
            'id': backup_id,
            'label': task.params.get('label', ''),
            'data': copy.deepcopy(task.params.get('data', {})),
            'created_at': datetime.now()
        }
        return {'backup_id': backup_id, 'created': True}

    def _restore_backup(self, task: Task) -> Dict[str, Any]:
        backup_id = task.params['backup_id']
        backup = self._backups.get(backup_id)
        if backup is None:
            raise KeyError(f"Backup {backup_id} not found")
        return {'backup_id': backup_id, 'data': copy.deepcopy(backup['data'])}

    def _get_backup_history(self, task: Task) -> Dict[str, Any]:
        history = [
            {'id': b['id'], 'label': b['label'], 'created_at': b['created_at'].isoformat()}
            for b in self._backups.values()
        ]
        return {'backups': history, 'count': len(history)}

    def _delete_backup(self, task: Task) -> Dict[str, Any]:
        backup_id = task.params['backup_id']
        return {'backup_id': backup_id, 'deleted': self._backups.pop(backup_id, None) is not None}


class AnalyticsAction(Enum):
    RECORD_EVENT = "record_event"
    GET_METRICS = "get_metrics"
    GENERATE_REPORT = "generate_report"


class AnalyticsWorker(BaseWorker):
    """Учет событий и простые отчеты."""

    category = TaskCategory.ANALYTICS
    actions = AnalyticsAction
    default_name = "Analytics Worker"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._events: List[Dict[str, Any]] = []

    def _build_handlers(self):
        return {
            AnalyticsAction.RECORD_EVENT: self._record_event,
            AnalyticsAction.GET_METRICS: self._get_metrics,
            AnalyticsAction.GENERATE_REPORT: self._generate_report
        }

    def _record_event(self, task: Task) -> Dict[str, Any]:
        event = {
            'type': task.params.get('event_type', 'generic'),
            'data': task.params.get('data', {}),
            'timestamp': datetime.now()
        }
        self._events.append(event)
        return {'recorded': True, 'total_events': len(self._events)}

    def _get_metrics(self, task: Task) -> Dict[str, Any]:
        counts = Counter(event['type'] for event in self._events)
        return {'total_events': len(self._events), 'by_type': dict(counts)}

    def _generate_report(self, task: Task) -> Dict[str, Any]:
        counts = Counter(event['type'] for event in self._events)
        top = counts.most_common(int(task.params.get('top', 5)))
        return {
            'generated_at': datetime.now().isoformat(),
            'total_events': len(self._events),
            'top_event_types': [{'type': t, 'count': c} for t, c in top]
        }
