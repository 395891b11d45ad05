"""
Контракт воркера.

Каждый воркер специализирован на одной категории задач и реализует:
start/stop, execute_task, cancel_task и get_status. Координатор зависит только
от этого интерфейса.

Действия воркера описываются перечислением (атрибут ``actions``), и для
каждого члена перечисления должен существовать обработчик. Неполная таблица
обработчиков отвергается при создании воркера, а неизвестное действие в
задаче завершается UnsupportedActionError, а не падением воркера.
"""

import threading
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional, Set, Type
from dataclasses import dataclass, field
from datetime import datetime

from ..models.task import Task, TaskCategory
from ..models.worker import WorkerState, WorkerStatus
from ..utils.logger import get_logger
from ..utils.monitoring import TelemetryProvider, ProcessTelemetry
from ..exceptions import (
    ConfigurationError,
    CoordinatorError,
    UnsupportedActionError,
    WorkerError,
    WorkerExecutionError,
    WorkerUnavailableError
)


logger = get_logger(__name__)

Handler = Callable[[Task], Any]


class CommonAction(Enum):
    """Действия, которые поддерживает любой воркер."""
    SYNC = "sync"
    APPLY_CONFIG = "apply_config"


@dataclass
class TaskRecord:
    """Запись приватной истории задач воркера."""
    task_id: str
    action: str
    success: bool
    finished_at: datetime = field(default_factory=datetime.now)


class BaseWorker:
    """Базовое поведение воркера."""

    category: Optional[TaskCategory] = None
    actions: Optional[Type[Enum]] = None
    default_name: str = ""

    def __init__(
        self,
        worker_id: Optional[str] = None,
        name: str = "",
        telemetry: Optional[TelemetryProvider] = None,
        history_size: int = 100
    ):
        if self.category is None or self.actions is None:
            raise ConfigurationError(f"{type(self).__name__} must define category and actions")

        self.id = worker_id or self.category.value
        self.name = name or self.default_name or f"{self.category.value} worker"

        self._lock = threading.Lock()
        self._telemetry = telemetry or ProcessTelemetry()
        self._state = WorkerState.INITIALIZING
        self._last_activity = datetime.now()
        self._memory_usage = 0.0
        self._cpu_usage = 0.0
        self._tasks_completed = 0
        self._errors = 0
        self._active_tasks: Dict[str, threading.Event] = {}
        self._history: Deque[TaskRecord] = deque(maxlen=history_size)
        self._settings: Dict[str, Any] = {}
        self._accepted_categories: Set[TaskCategory] = set()

        self._handlers = self._build_handlers()
        missing = [action.value for action in self.actions if action not in self._handlers]
        if missing:
            raise ConfigurationError(f"Worker {self.id} has no handlers for actions: {missing}")

        self._common_handlers: Dict[CommonAction, Handler] = {
            CommonAction.SYNC: self._sync,
            CommonAction.APPLY_CONFIG: self._apply_config
        }

    # Хуки для наследников

    def _build_handlers(self) -> Dict[Enum, Handler]:
        """Таблица обработчиков: член перечисления actions -> метод."""
        raise NotImplementedError

    def _on_start(self):
        """Одноразовая подготовка при запуске."""

    def _on_stop(self):
        """Освобождение ресурсов при остановке."""

    # Жизненный цикл

    def start(self):
        """Запуск воркера. Повторный запуск после stop() допустим."""
        with self._lock:
            if self._state == WorkerState.RUNNING:
                logger.debug(f"Worker {self.id} already running")
                return
            self._state = WorkerState.INITIALIZING

        try:
            self._on_start()
        except Exception as e:
            with self._lock:
                self._state = WorkerState.ERROR
            logger.error(f"Worker {self.id} failed to start: {e}")
            raise WorkerError(f"Worker {self.id} failed to start: {e}") from e

        with self._lock:
            self._state = WorkerState.RUNNING
            self._last_activity = datetime.now()

        logger.info(f"Worker {self.id} ({self.name}) started")

    def stop(self):
        """Остановка воркера: отмена задач в работе и переход в stopped."""
        with self._lock:
            for cancel_event in self._active_tasks.values():
                cancel_event.set()
            in_flight = len(self._active_tasks)

        if in_flight:
            logger.info(f"Worker {self.id} requested cancellation of {in_flight} in-flight tasks")

        try:
            self._on_stop()
        except Exception as e:
            with self._lock:
                self._state = WorkerState.ERROR
            logger.error(f"Worker {self.id} failed to stop cleanly: {e}")
            raise WorkerError(f"Worker {self.id} failed to stop: {e}") from e

        with self._lock:
            self._state = WorkerState.STOPPED
            self._last_activity = datetime.now()

        logger.info(f"Worker {self.id} stopped")

    # Выполнение задач

    def execute_task(self, task: Task) -> Any:
        """
        Выполнение задачи.

        Args:
            task: Задача категории воркера

        Returns:
            Результат обработчика действия

        Raises:
            WorkerExecutionError: задача непринятой категории или ошибка обработчика
            UnsupportedActionError: неизвестное действие
            WorkerUnavailableError: воркер не запущен
        """
        if not self.accepts(task.category):
            raise WorkerExecutionError(
                self.id,
                f"Worker {self.id} handles '{self.category.value}' tasks, got '{task.category.value}'"
            )

        with self._lock:
            if self._state != WorkerState.RUNNING:
                raise WorkerUnavailableError(
                    f"Worker {self.id} is not running (state: {self._state.value})"
                )
            cancel_event = threading.Event()
            self._active_tasks[task.id] = cancel_event

        logger.debug(f"Worker {self.id} executing task {task.id} ({task.action})")

        try:
            handler = self._resolve_handler(task.action)
            result = handler(task)
        except CoordinatorError:
            self._finish_task(task, success=False)
            raise
        except Exception as e:
            self._finish_task(task, success=False)
            raise WorkerExecutionError(self.id, f"Action '{task.action}' failed: {e}") from e

        self._finish_task(task, success=True)
        return result

    def cancel_task(self, task_id: str) -> bool:
        """Кооперативная отмена. False, если задача уже завершена или неизвестна."""
        with self._lock:
            cancel_event = self._active_tasks.get(task_id)
            if cancel_event is None:
                return False
            cancel_event.set()

        logger.info(f"Worker {self.id} received cancellation for task {task_id}")
        return True

    def is_cancel_requested(self, task_id: str) -> bool:
        """Проверка флага отмены для задачи в работе."""
        with self._lock:
            cancel_event = self._active_tasks.get(task_id)
        return cancel_event is not None and cancel_event.is_set()

    def get_status(self) -> WorkerStatus:
        """Неблокирующий снимок состояния."""
        with self._lock:
            return WorkerStatus(
                worker_id=self.id,
                name=self.name,
                state=self._state,
                last_activity=self._last_activity,
                memory_usage=self._memory_usage,
                cpu_usage=self._cpu_usage,
                tasks_completed=self._tasks_completed,
                errors=self._errors,
                active_tasks=len(self._active_tasks)
            )

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def active_task_count(self) -> int:
        with self._lock:
            return len(self._active_tasks)

    def get_history(self):
        """Копия приватной истории задач."""
        with self._lock:
            return list(self._history)

    def get_settings(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._settings)

    # Чужие категории на время failover

    def accepts(self, category: TaskCategory) -> bool:
        with self._lock:
            return category == self.category or category in self._accepted_categories

    def accept_category(self, category: TaskCategory):
        """
        Прием задач чужой категории, перенаправленных на этот воркер.

        Действия по-прежнему ищутся в собственном перечислении воркера и
        в общих действиях; остальные дают UnsupportedActionError.
        """
        with self._lock:
            self._accepted_categories.add(category)

    def release_category(self, category: TaskCategory):
        with self._lock:
            self._accepted_categories.discard(category)

    # Внутренние методы

    def _resolve_handler(self, action: str) -> Handler:
        try:
            return self._handlers[self.actions(action)]
        except ValueError:
            pass

        try:
            return self._common_handlers[CommonAction(action)]
        except ValueError:
            raise UnsupportedActionError(
                self.id, f"Unsupported action '{action}' for worker {self.id}"
            ) from None

    def _finish_task(self, task: Task, success: bool):
        memory, cpu = self._telemetry.sample(self.id)

        with self._lock:
            self._active_tasks.pop(task.id, None)
            self._history.append(TaskRecord(task_id=task.id, action=task.action, success=success))
            if success:
                self._tasks_completed += 1
            else:
                self._errors += 1
            self._last_activity = datetime.now()
            self._memory_usage = memory
            self._cpu_usage = cpu

    def _sync(self, task: Task) -> Dict[str, Any]:
        status = self.get_status()
        return {
            'worker_id': self.id,
            'synced_at': datetime.now().isoformat(),
            'tasks_completed': status.tasks_completed,
            'errors': status.errors
        }

    def _apply_config(self, task: Task) -> Dict[str, Any]:
        with self._lock:
            self._settings.update(task.params)
        logger.info(f"Worker {self.id} applied config keys: {sorted(task.params)}")
        return {'worker_id': self.id, 'applied': sorted(task.params)}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id}, state={self._state.value})"
