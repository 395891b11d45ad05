"""
Общие фикстуры и тестовые воркеры.
"""

import time
import threading
from enum import Enum

import pytest

from agent_coordinator.core.worker import BaseWorker
from agent_coordinator.core.registry import WorkerRegistry
from agent_coordinator.models.task import Task, TaskCategory, TaskPayload, TaskPriority
from agent_coordinator.utils.monitoring import StaticTelemetry


class EchoAction(Enum):
    ECHO = "echo"
    FAIL = "fail"
    WAIT = "wait"


class EchoWorker(BaseWorker):
    """Воркер для тестов: эхо, ошибка и ожидание внешнего сигнала."""

    category = TaskCategory.ANALYTICS
    actions = EchoAction

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.lifecycle = []

    def _build_handlers(self):
        return {
            EchoAction.ECHO: self._echo,
            EchoAction.FAIL: self._fail,
            EchoAction.WAIT: self._wait
        }

    def _on_start(self):
        self.lifecycle.append("start")

    def _on_stop(self):
        self.lifecycle.append("stop")

    def _echo(self, task):
        return {'echo': dict(task.params), 'worker': self.id}

    def _fail(self, task):
        raise RuntimeError(task.params.get('message', 'boom'))

    def _wait(self, task):
        task.params['started'].set()
        task.params['release'].wait(5)
        return {'cancel_requested': self.is_cancel_requested(task.id)}


def make_worker(category: TaskCategory, worker_id=None, telemetry=None, start=True) -> EchoWorker:
    """EchoWorker заданной категории."""
    worker_cls = type(f"{category.name.title()}EchoWorker", (EchoWorker,), {'category': category})
    worker = worker_cls(worker_id=worker_id, telemetry=telemetry or StaticTelemetry())
    if start:
        worker.start()
    return worker


def make_task(category=TaskCategory.CALL, action="echo", priority=TaskPriority.MEDIUM, **params) -> Task:
    return Task(category=category, payload=TaskPayload(action=action, params=params), priority=priority)


def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Ожидание условия с таймаутом."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def start_blocking_task(coordinator, category=TaskCategory.CALL, **extra):
    """
    Запуск задачи WAIT в отдельном потоке.

    Returns:
        (task, release_event, result_holder, thread)
    """
    started = threading.Event()
    release = threading.Event()
    task = make_task(category, action="wait", started=started, release=release, **extra)
    holder = {}

    thread = threading.Thread(target=lambda: holder.update(result=coordinator.coordinate(task)))
    thread.start()
    assert started.wait(2), "worker did not start the task"
    return task, release, holder, thread


@pytest.fixture
def telemetry():
    return StaticTelemetry()


@pytest.fixture
def registry(telemetry):
    """Реестр с тремя запущенными воркерами: call, message, contact."""
    registry = WorkerRegistry()
    for category in (TaskCategory.CALL, TaskCategory.MESSAGE, TaskCategory.CONTACT):
        registry.register(make_worker(category, telemetry=telemetry))
    return registry
