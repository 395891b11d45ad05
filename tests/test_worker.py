"""
Тесты контракта воркера.
"""

import dataclasses
import threading
from enum import Enum
from unittest.mock import Mock

import pytest

from agent_coordinator.core.worker import BaseWorker
from agent_coordinator.models.task import TaskCategory
from agent_coordinator.models.worker import WorkerState
from agent_coordinator.utils.monitoring import StaticTelemetry
from agent_coordinator.exceptions import (
    ConfigurationError,
    UnsupportedActionError,
    WorkerError,
    WorkerExecutionError,
    WorkerUnavailableError
)

from conftest import make_task, make_worker


class TestWorkerContract:
    """Тесты выполнения задач воркером."""

    def test_execute_dispatches_to_handler(self):
        """Тест вызова обработчика действия."""
        worker = make_worker(TaskCategory.CALL)

        result = worker.execute_task(make_task(TaskCategory.CALL, value=42))

        assert result == {'echo': {'value': 42}, 'worker': 'call'}
        status = worker.get_status()
        assert status.tasks_completed == 1
        assert status.errors == 0
        assert status.active_tasks == 0

    def test_unknown_action_is_rejected_without_crashing(self):
        """Тест неизвестного действия."""
        worker = make_worker(TaskCategory.CALL)

        with pytest.raises(UnsupportedActionError) as exc_info:
            worker.execute_task(make_task(TaskCategory.CALL, action="teleport"))

        assert exc_info.value.worker_id == "call"
        assert worker.state == WorkerState.RUNNING
        assert worker.get_status().errors == 1

    def test_foreign_category_is_rejected(self):
        """Тест задачи чужой категории."""
        worker = make_worker(TaskCategory.CALL)

        with pytest.raises(WorkerExecutionError):
            worker.execute_task(make_task(TaskCategory.MESSAGE))

    def test_accepted_category_until_released(self):
        """Тест приема чужой категории на время failover."""
        worker = make_worker(TaskCategory.CALL)
        worker.accept_category(TaskCategory.MESSAGE)

        assert worker.execute_task(make_task(TaskCategory.MESSAGE, text="hi"))['echo'] == {'text': "hi"}
        with pytest.raises(UnsupportedActionError):
            worker.execute_task(make_task(TaskCategory.MESSAGE, action="send_sms"))

        worker.release_category(TaskCategory.MESSAGE)

        with pytest.raises(WorkerExecutionError):
            worker.execute_task(make_task(TaskCategory.MESSAGE))

    def test_stopped_worker_is_unavailable(self):
        """Тест выполнения на остановленном воркере."""
        worker = make_worker(TaskCategory.CALL)
        worker.stop()

        with pytest.raises(WorkerUnavailableError):
            worker.execute_task(make_task(TaskCategory.CALL))

    def test_handler_error_is_wrapped(self):
        """Тест оборачивания ошибки обработчика."""
        worker = make_worker(TaskCategory.CALL)

        with pytest.raises(WorkerExecutionError) as exc_info:
            worker.execute_task(make_task(TaskCategory.CALL, action="fail", message="disk full"))

        assert "disk full" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert worker.get_history()[-1].success is False

    def test_common_actions(self):
        """Тест общих действий sync и apply_config."""
        worker = make_worker(TaskCategory.CALL)

        applied = worker.execute_task(make_task(TaskCategory.CALL, action="apply_config", volume=7))
        synced = worker.execute_task(make_task(TaskCategory.CALL, action="sync"))

        assert applied['applied'] == ['volume']
        assert worker.get_settings() == {'volume': 7}
        assert synced['worker_id'] == "call"
        assert synced['tasks_completed'] == 1

    def test_telemetry_is_published_in_status(self):
        """Тест публикации показаний телеметрии."""
        telemetry = StaticTelemetry(memory=12.5, cpu=3.0)
        worker = make_worker(TaskCategory.CALL, telemetry=telemetry)

        worker.execute_task(make_task(TaskCategory.CALL))

        status = worker.get_status()
        assert status.memory_usage == 12.5
        assert status.cpu_usage == 3.0

    def test_status_snapshot_is_read_only(self):
        """Тест неизменяемости снимка состояния."""
        status = make_worker(TaskCategory.CALL).get_status()

        with pytest.raises(dataclasses.FrozenInstanceError):
            status.errors = 10


class TestWorkerLifecycle:
    """Тесты жизненного цикла воркера."""

    def test_start_is_idempotent(self):
        """Тест повторного запуска."""
        worker = make_worker(TaskCategory.CALL)
        worker.start()

        assert worker.lifecycle == ["start"]
        assert worker.get_status().is_running()

    def test_restart_after_stop(self):
        """Тест перезапуска после остановки."""
        worker = make_worker(TaskCategory.CALL)
        worker.stop()
        worker.start()

        assert worker.lifecycle == ["start", "stop", "start"]
        assert worker.state == WorkerState.RUNNING

    def test_failed_start_moves_to_error_state(self):
        """Тест ошибки при запуске."""
        worker = make_worker(TaskCategory.CALL, start=False)
        worker._on_start = Mock(side_effect=OSError("port busy"))

        with pytest.raises(WorkerError):
            worker.start()

        assert worker.state == WorkerState.ERROR

    def test_stop_cancels_in_flight_tasks(self):
        """Тест отмены задач в работе при остановке."""
        worker = make_worker(TaskCategory.CALL)
        started, release = threading.Event(), threading.Event()
        holder = {}
        task = make_task(TaskCategory.CALL, action="wait", started=started, release=release)

        thread = threading.Thread(target=lambda: holder.update(result=worker.execute_task(task)))
        thread.start()
        assert started.wait(2)

        worker.stop()
        release.set()
        thread.join(2)

        assert holder['result'] == {'cancel_requested': True}
        assert worker.state == WorkerState.STOPPED

    def test_cancel_unknown_task(self):
        """Тест отмены неизвестной задачи."""
        worker = make_worker(TaskCategory.CALL)
        assert worker.cancel_task("missing") is False


class TestWorkerDeclaration:
    """Тесты объявления воркеров."""

    def test_incomplete_handler_table_is_rejected(self):
        """Тест неполной таблицы обработчиков."""

        class TwoActions(Enum):
            FIRST = "first"
            SECOND = "second"

        class PartialWorker(BaseWorker):
            category = TaskCategory.CALL
            actions = TwoActions

            def _build_handlers(self):
                return {TwoActions.FIRST: lambda task: None}

        with pytest.raises(ConfigurationError) as exc_info:
            PartialWorker(telemetry=StaticTelemetry())

        assert "second" in str(exc_info.value)

    def test_worker_without_category_is_rejected(self):
        """Тест воркера без категории."""

        class BareWorker(BaseWorker):
            pass

        with pytest.raises(ConfigurationError):
            BareWorker(telemetry=StaticTelemetry())

    def test_default_identity(self):
        """Тест id и имени по умолчанию."""
        worker = make_worker(TaskCategory.SECURITY, start=False)

        assert worker.id == "security"
        assert worker.name == "security worker"
        assert worker.state == WorkerState.INITIALIZING
