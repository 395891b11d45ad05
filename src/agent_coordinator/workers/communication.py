"""
Воркеры коммуникаций: звонки, сообщения, контакты.

Все состояние хранится в памяти воркера, внешних вызовов нет.
"""

import re
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime

from ..core.worker import BaseWorker
from ..models.task import Task, TaskCategory
from ..utils.logger import get_logger


logger = get_logger(__name__)


def _require(task: Task, *keys: str) -> List[Any]:
    """Обязательные параметры задачи."""
    missing = [key for key in keys if key not in task.params]
    if missing:
        raise ValueError(f"Missing required parameters: {missing}")
    return [task.params[key] for key in keys]


class CallAction(Enum):
    MAKE_CALL = "make_call"
    ANSWER_CALL = "answer_call"
    END_CALL = "end_call"
    REJECT_CALL = "reject_call"
    BLOCK_NUMBER = "block_number"
    LOOKUP_CALLER_ID = "lookup_caller_id"


class CallWorker(BaseWorker):
    """Управление звонками."""

    category = TaskCategory.CALL
    actions = CallAction
    default_name = "Call Management Worker"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._calls: Dict[str, Dict[str, Any]] = {}
        self._blocked: set = set()
        self._caller_ids: Dict[str, str] = {}

    def _build_handlers(self):
        return {
            CallAction.MAKE_CALL: self._make_call,
            CallAction.ANSWER_CALL: self._answer_call,
            CallAction.END_CALL: self._end_call,
            CallAction.REJECT_CALL: self._reject_call,
            CallAction.BLOCK_NUMBER: self._block_number,
            CallAction.LOOKUP_CALLER_ID: self._lookup_caller_id
        }

    def _make_call(self, task: Task) -> Dict[str, Any]:
        number = task.params.get('phone_number', task.params.get('phone', 'unknown'))
        if number in self._blocked:
            raise ValueError(f"Number {number} is blocked")

        call_id = str(uuid.uuid4())
        self._calls[call_id] = {
            'call_id': call_id,
            'phone_number': number,
            'direction': 'outgoing',
            'status': 'active',
            'started_at': datetime.now()
        }
        return {'call_id': call_id, 'status': 'active'}

    def _answer_call(self, task: Task) -> Dict[str, Any]:
        call = self._get_call(task)
        call['status'] = 'active'
        return {'call_id': call['call_id'], 'status': 'active'}

    def _end_call(self, task: Task) -> Dict[str, Any]:
        call = self._get_call(task)
        call['status'] = 'ended'
        duration = (datetime.now() - call['started_at']).total_seconds()
        return {'call_id': call['call_id'], 'status': 'ended', 'duration_s': duration}

    def _reject_call(self, task: Task) -> Dict[str, Any]:
        call = self._get_call(task)
        call['status'] = 'rejected'
        return {'call_id': call['call_id'], 'status': 'rejected'}

    def _block_number(self, task: Task) -> Dict[str, Any]:
        number, = _require(task, 'phone_number')
        self._blocked.add(number)
        return {'phone_number': number, 'blocked': True}

    def _lookup_caller_id(self, task: Task) -> Dict[str, Any]:
        number, = _require(task, 'phone_number')
        return {
            'phone_number': number,
            'name': self._caller_ids.get(number),
            'blocked': number in self._blocked
        }

    def _get_call(self, task: Task) -> Dict[str, Any]:
        call_id, = _require(task, 'call_id')
        call = self._calls.get(call_id)
        if call is None:
            raise KeyError(f"Call {call_id} not found")
        return call


class MessageAction(Enum):
    SEND_SMS = "send_sms"
    SEND_CHAT_MESSAGE = "send_chat_message"
    DETECT_SPAM = "detect_spam"
    AUTO_CATEGORIZE = "auto_categorize"
    MARK_AS_READ = "mark_as_read"
    GET_UNREAD_COUNT = "get_unread_count"


SPAM_KEYWORDS = ('win', 'free', 'prize', 'urgent', 'click here', 'offer')

MESSAGE_CATEGORIES = {
    'finance': ('payment', 'invoice', 'bank', 'transfer'),
    'work': ('meeting', 'deadline', 'project', 'report'),
    'social': ('party', 'dinner', 'birthday', 'weekend'),
}


class MessageWorker(BaseWorker):
    """Отправка и разбор сообщений."""

    category = TaskCategory.MESSAGE
    actions = MessageAction
    default_name = "Message Management Worker"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._messages: Dict[str, Dict[str, Any]] = {}

    def _build_handlers(self):
        return {
            MessageAction.SEND_SMS: self._send_sms,
            MessageAction.SEND_CHAT_MESSAGE: self._send_chat_message,
            MessageAction.DETECT_SPAM: self._detect_spam,
            MessageAction.AUTO_CATEGORIZE: self._auto_categorize,
            MessageAction.MARK_AS_READ: self._mark_as_read,
            MessageAction.GET_UNREAD_COUNT: self._get_unread_count
        }

    def _store(self, channel: str, task: Task) -> Dict[str, Any]:
        message_id = str(uuid.uuid4())
        self._messages[message_id] = {
            'id': message_id,
            'channel': channel,
            'recipient': task.params.get('recipient'),
            'content': task.params.get('content', ''),
            'read': False,
            'created_at': datetime.now()
        }
        return {'message_id': message_id, 'channel': channel, 'status': 'sent'}

    def _send_sms(self, task: Task) -> Dict[str, Any]:
        _require(task, 'recipient')
        return self._store('sms', task)

    def _send_chat_message(self, task: Task) -> Dict[str, Any]:
        return self._store('chat', task)

    def _detect_spam(self, task: Task) -> Dict[str, Any]:
        content = task.params.get('content', '').lower()
        hits = [keyword for keyword in SPAM_KEYWORDS if keyword in content]
        score = min(1.0, len(hits) / 3)
        return {'is_spam': score >= 0.5, 'score': score, 'matched': hits}

    def _auto_categorize(self, task: Task) -> Dict[str, Any]:
        content = task.params.get('content', '').lower()
        for category, keywords in MESSAGE_CATEGORIES.items():
            if any(keyword in content for keyword in keywords):
                return {'category': category}
        return {'category': 'general'}

    def _mark_as_read(self, task: Task) -> Dict[str, Any]:
        message_id, = _require(task, 'message_id')
        message = self._messages.get(message_id)
        if message is None:
            raise KeyError(f"Message {message_id} not found")
        message['read'] = True
        return {'message_id': message_id, 'read': True}

    def _get_unread_count(self, task: Task) -> Dict[str, Any]:
        return {'unread': sum(1 for m in self._messages.values() if not m['read'])}


class ContactAction(Enum):
    CREATE_CONTACT = "create_contact"
    GET_CONTACT = "get_contact"
    UPDATE_CONTACT = "update_contact"
    DELETE_CONTACT = "delete_contact"
    SEARCH_CONTACTS = "search_contacts"


class ContactWorker(BaseWorker):
    """Хранение контактов."""

    category = TaskCategory.CONTACT
    actions = ContactAction
    default_name = "Contact Management Worker"

    CONTACT_FIELDS = ('name', 'phone', 'email', 'groups', 'notes')

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._contacts: Dict[str, Dict[str, Any]] = {}

    def _build_handlers(self):
        return {
            ContactAction.CREATE_CONTACT: self._create_contact,
            ContactAction.GET_CONTACT: self._get_contact,
            ContactAction.UPDATE_CONTACT: self._update_contact,
            ContactAction.DELETE_CONTACT: self._delete_contact,
            ContactAction.SEARCH_CONTACTS: self._search_contacts
        }

    def _create_contact(self, task: Task) -> Dict[str, Any]:
        contact_id = str(uuid.uuid4())
        contact = {key: task.params[key] for key in self.CONTACT_FIELDS if key in task.params}
        contact.setdefault('groups', [])
        contact['id'] = contact_id
        contact['updated_at'] = datetime.now()
        self._contacts[contact_id] = contact
        return {'contact_id': contact_id, 'created': True}

    def _get_contact(self, task: Task) -> Dict[str, Any]:
        contact = self._find(task)
        if contact is None:
            raise KeyError("Contact not found")
        return dict(contact)

    def _update_contact(self, task: Task) -> Dict[str, Any]:
        contact = self._find(task)
        if contact is None:
            # Обновление несуществующего контакта создает его
            return {**self._create_contact(task), 'updated': False}

        for key in self.CONTACT_FIELDS:
            if key in task.params:
                contact[key] = task.params[key]
        contact['updated_at'] = datetime.now()
        return {'contact_id': contact['id'], 'updated': True}

    def _delete_contact(self, task: Task) -> Dict[str, Any]:
        contact = self._find(task)
        if contact is None:
            return {'deleted': False}
        del self._contacts[contact['id']]
        return {'contact_id': contact['id'], 'deleted': True}

    def _search_contacts(self, task: Task) -> Dict[str, Any]:
        query = str(task.params.get('query', '')).lower()
        matches = [
            dict(contact) for contact in self._contacts.values()
            if query in str(contact.get('name', '')).lower()
            or query in str(contact.get('phone', ''))
        ]
        return {'query': query, 'contacts': matches, 'count': len(matches)}

    def _find(self, task: Task) -> Optional[Dict[str, Any]]:
        contact_id = task.params.get('contact_id')
        if contact_id:
            return self._contacts.get(contact_id)

        phone = task.params.get('phone')
        if phone:
            normalized = re.sub(r'\D', '', str(phone))
            return next(
                (c for c in self._contacts.values()
                 if re.sub(r'\D', '', str(c.get('phone', ''))) == normalized),
                None
            )
        return None
