"""
Воркеры анализа: текстовая аналитика и безопасность.
"""

from enum import Enum
from typing import Any, Dict, List
from datetime import datetime

from ..core.worker import BaseWorker
from ..models.task import Task, TaskCategory
from ..utils.logger import get_logger


logger = get_logger(__name__)


POSITIVE_WORDS = ('good', 'great', 'excellent', 'happy', 'thanks', 'love', 'perfect')
NEGATIVE_WORDS = ('bad', 'terrible', 'awful', 'angry', 'hate', 'problem', 'broken')

TEXT_CLASSES = {
    'question': ('?', 'how', 'what', 'why', 'when'),
    'request': ('please', 'could you', 'need'),
    'complaint': ('broken', 'problem', 'not working', 'refund'),
}


class AIAction(Enum):
    PROCESS_TEXT = "process_text"
    ANALYZE_SENTIMENT = "analyze_sentiment"
    CLASSIFY_TEXT = "classify_text"
    SUMMARIZE_TEXT = "summarize_text"
    SUGGEST_GROUPS = "suggest_groups"


class AIWorker(BaseWorker):
    """Эвристическая обработка текста."""

    category = TaskCategory.AI
    actions = AIAction
    default_name = "AI Processing Worker"

    def _build_handlers(self):
        return {
            AIAction.PROCESS_TEXT: self._process_text,
            AIAction.ANALYZE_SENTIMENT: self._analyze_sentiment,
            AIAction.CLASSIFY_TEXT: self._classify_text,
            AIAction.SUMMARIZE_TEXT: self._summarize_text,
            AIAction.SUGGEST_GROUPS: self._suggest_groups
        }

    @staticmethod
    def _text(task: Task) -> str:
        return str(task.params.get('text', task.params.get('content', '')))

    def _process_text(self, task: Task) -> Dict[str, Any]:
        text = self._text(task)
        return {
            'length': len(text),
            'words': len(text.split()),
            'sentiment': self._sentiment(text),
            'category': self._classify(text)
        }

    def _analyze_sentiment(self, task: Task) -> Dict[str, Any]:
        return {'sentiment': self._sentiment(self._text(task))}

    def _classify_text(self, task: Task) -> Dict[str, Any]:
        return {'category': self._classify(self._text(task))}

    def _summarize_text(self, task: Task) -> Dict[str, Any]:
        max_words = int(task.params.get('max_words', 20))
        words = self._text(task).split()
        summary = ' '.join(words[:max_words])
        if len(words) > max_words:
            summary += '...'
        return {'summary': summary, 'truncated': len(words) > max_words}

    def _suggest_groups(self, task: Task) -> Dict[str, Any]:
        groups: List[str] = []
        email = str(task.params.get('email', ''))
        notes = str(task.params.get('notes', '')).lower()

        if email.endswith(('.com', '.org')) and '@' in email:
            groups.append('work')
        if 'family' in notes:
            groups.append('family')
        if 'friend' in notes:
            groups.append('friends')
        if not groups:
            groups.append('general')
        return {'groups': groups}

    @staticmethod
    def _sentiment(text: str) -> str:
        lowered = text.lower()
        score = (sum(lowered.count(w) for w in POSITIVE_WORDS)
                 - sum(lowered.count(w) for w in NEGATIVE_WORDS))
        if score > 0:
            return 'positive'
        if score < 0:
            return 'negative'
        return 'neutral'

    @staticmethod
    def _classify(text: str) -> str:
        lowered = text.lower()
        for label, markers in TEXT_CLASSES.items():
            if any(marker in lowered for marker in markers):
                return label
        return 'statement'


class SecurityAction(Enum):
    SCAN_FOR_THREATS = "scan_for_threats"
    BLOCK_NUMBER = "block_number"
    UNBLOCK_NUMBER = "unblock_number"
    CHECK_SECURITY = "check_security"


THREAT_MARKERS = ('password', 'verify your account', 'wire money', 'gift card', 'ssn')


class SecurityWorker(BaseWorker):
    """Проверки безопасности и список блокировок."""

    category = TaskCategory.SECURITY
    actions = SecurityAction
    default_name = "Security Worker"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._blocked: Dict[str, datetime] = {}
        self._scans = 0
        self._threats_found = 0

    def _build_handlers(self):
        return {
            SecurityAction.SCAN_FOR_THREATS: self._scan_for_threats,
            SecurityAction.BLOCK_NUMBER: self._block_number,
            SecurityAction.UNBLOCK_NUMBER: self._unblock_number,
            SecurityAction.CHECK_SECURITY: self._check_security
        }

    def _scan_for_threats(self, task: Task) -> Dict[str, Any]:
        content = str(task.params.get('content', '')).lower()
        number = task.params.get('phone_number')

        threats = [marker for marker in THREAT_MARKERS if marker in content]
        if number and number in self._blocked:
            threats.append('blocked_number')

        self._scans += 1
        if threats:
            self._threats_found += 1
            logger.warning(f"Worker {self.id} detected threats: {threats}")

        return {'threats': threats, 'safe': not threats}

    def _block_number(self, task: Task) -> Dict[str, Any]:
        number = task.params['phone_number']
        self._blocked[number] = datetime.now()
        return {'phone_number': number, 'blocked': True}

    def _unblock_number(self, task: Task) -> Dict[str, Any]:
        number = task.params['phone_number']
        removed = self._blocked.pop(number, None) is not None
        return {'phone_number': number, 'unblocked': removed}

    def _check_security(self, task: Task) -> Dict[str, Any]:
        return {
            'blocked_numbers': len(self._blocked),
            'scans': self._scans,
            'threats_found': self._threats_found,
            'status': 'alert' if self._threats_found else 'secure'
        }
