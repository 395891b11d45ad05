"""
Тесты координатора задач.
"""

import threading

import pytest

from agent_coordinator.core.coordinator import TaskCoordinator, CoordinatorConfig, UNASSIGNED_WORKER
from agent_coordinator.models.task import TaskCategory, TaskPriority, TaskStatus
from agent_coordinator.exceptions import (
    NoSuitableWorkerError,
    TaskCancelledError,
    TaskStateError,
    UnknownTaskError,
    UnsupportedActionError,
    WorkerExecutionError,
    WorkerUnavailableError
)

from conftest import make_task, start_blocking_task, wait_until


@pytest.fixture
def coordinator(registry):
    coordinator = TaskCoordinator(
        registry,
        CoordinatorConfig(critical_poll_interval=0.02, restart_delay=0.0)
    )
    yield coordinator
    coordinator.stop()


class TestCoordinate:
    """Тесты синхронной координации."""

    def test_task_is_routed_to_category_worker(self, coordinator):
        """Тест маршрутизации по категории."""
        task = make_task(TaskCategory.MESSAGE, text="hi")

        result = coordinator.coordinate(task)

        assert result.is_success()
        assert result.worker_id == "message"
        assert result.data['echo'] == {'text': 'hi'}
        assert task.status == TaskStatus.COMPLETED
        assert task.assigned_worker == "message"
        assert task.started_at is not None and task.completed_at is not None
        assert coordinator.get_task_queue() == []
        assert coordinator.get_history() == [task]

    def test_missing_worker_fails_without_assignment(self, coordinator):
        """Тест категории без воркера."""
        task = make_task(TaskCategory.BACKUP)

        result = coordinator.coordinate(task)

        assert result.is_failure()
        assert isinstance(result.error, NoSuitableWorkerError)
        assert result.worker_id == UNASSIGNED_WORKER
        assert result.execution_time_ms == 0.0
        assert task.status == TaskStatus.FAILED
        assert task.assigned_worker is None
        assert coordinator.get_metrics()['routing_failures'] == 1

    def test_worker_error_becomes_failed_result(self, coordinator):
        """Тест ошибки воркера."""
        task = make_task(TaskCategory.CALL, action="fail")

        result = coordinator.coordinate(task)

        assert result.is_failure()
        assert isinstance(result.error, WorkerExecutionError)
        assert result.worker_id == "call"
        assert task.status == TaskStatus.FAILED
        assert task.error is result.error

    def test_unsupported_action(self, coordinator):
        """Тест неизвестного действия."""
        result = coordinator.coordinate(make_task(TaskCategory.CALL, action="fly"))

        assert isinstance(result.error, UnsupportedActionError)

    def test_stopped_worker(self, coordinator, registry):
        """Тест остановленного воркера."""
        registry.get_worker("call").stop()

        result = coordinator.coordinate(make_task(TaskCategory.CALL))

        assert isinstance(result.error, WorkerUnavailableError)

    def test_non_pending_task_is_not_touched(self, coordinator):
        """Тест повторной координации завершенной задачи."""
        task = make_task(TaskCategory.CALL)
        coordinator.coordinate(task)
        completed_at = task.completed_at

        result = coordinator.coordinate(task)

        assert isinstance(result.error, TaskStateError)
        assert task.status == TaskStatus.COMPLETED
        assert task.completed_at == completed_at

    def test_concurrent_coordination(self, coordinator):
        """Тест конкурентной координации."""
        tasks = [make_task(TaskCategory.CONTACT, n=i) for i in range(20)]
        results = []
        lock = threading.Lock()

        def run(task):
            result = coordinator.coordinate(task)
            with lock:
                results.append(result)

        threads = [threading.Thread(target=run, args=(t,)) for t in tasks]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5)

        assert len(results) == 20
        assert all(r.is_success() for r in results)
        assert coordinator.get_metrics()['total_coordinated'] == 20
        assert coordinator.get_metrics()['success_rate'] == 100.0


class TestQueue:
    """Тесты очереди и фонового цикла."""

    def test_submit_rejects_duplicates_and_non_pending(self, coordinator):
        """Тест валидации при постановке в очередь."""
        task = make_task(TaskCategory.CALL)
        coordinator.submit(task)

        with pytest.raises(TaskStateError):
            coordinator.submit(task)

        done = make_task(TaskCategory.CALL)
        done.status = TaskStatus.COMPLETED
        with pytest.raises(TaskStateError):
            coordinator.submit(done)

    def test_process_pending_runs_critical_first(self, coordinator, registry):
        """Тест порядка обработки очереди."""
        low = make_task(TaskCategory.CALL, priority=TaskPriority.LOW)
        critical = make_task(TaskCategory.CALL, priority=TaskPriority.CRITICAL)
        medium = make_task(TaskCategory.CALL, priority=TaskPriority.MEDIUM)
        for task in (low, critical, medium):
            coordinator.submit(task)

        results = coordinator.process_pending()

        assert [r.task_id for r in results] == [critical.id, low.id, medium.id]
        history_ids = [record.task_id for record in registry.get_worker("call").get_history()]
        assert history_ids == [critical.id, low.id, medium.id]
        assert coordinator.pending_task_count() == 0

    def test_background_loop_processes_only_critical(self, coordinator):
        """Тест фонового цикла critical-задач."""
        critical = make_task(TaskCategory.CALL, priority=TaskPriority.CRITICAL)
        normal = make_task(TaskCategory.CALL, priority=TaskPriority.HIGH)
        coordinator.submit(normal)
        coordinator.submit(critical)

        coordinator.start()
        assert coordinator.is_running()
        assert wait_until(lambda: critical.status == TaskStatus.COMPLETED)

        assert normal.status == TaskStatus.PENDING
        coordinator.stop()
        assert not coordinator.is_running()

    def test_paused_dispatch_leaves_tasks_pending(self, coordinator):
        """Тест паузы выборки из очереди."""
        critical = make_task(TaskCategory.CALL, priority=TaskPriority.CRITICAL)
        normal = make_task(TaskCategory.CALL)
        coordinator.submit(critical)
        coordinator.submit(normal)

        coordinator.pause()
        coordinator.start()

        assert coordinator.process_pending() == []
        assert not wait_until(lambda: critical.status != TaskStatus.PENDING, timeout=0.1)
        assert normal.status == TaskStatus.PENDING

        coordinator.resume()

        assert wait_until(lambda: critical.status == TaskStatus.COMPLETED)
        assert len(coordinator.process_pending()) == 1
        assert normal.status == TaskStatus.COMPLETED

    def test_get_task(self, coordinator):
        """Тест поиска задачи в очереди и истории."""
        queued = make_task(TaskCategory.CALL)
        coordinator.submit(queued)
        finished = make_task(TaskCategory.CALL)
        coordinator.coordinate(finished)

        assert coordinator.get_task(queued.id) is queued
        assert coordinator.get_task(finished.id) is finished
        with pytest.raises(UnknownTaskError):
            coordinator.get_task("missing")


class TestCancellation:
    """Тесты отмены задач."""

    def test_cancel_pending_task(self, coordinator):
        """Тест отмены задачи в очереди."""
        task = make_task(TaskCategory.CALL)
        coordinator.submit(task)

        assert coordinator.cancel(task.id, reason="user request") is True
        assert task.status == TaskStatus.CANCELLED
        assert isinstance(task.error, TaskCancelledError)
        assert coordinator.cancel(task.id) is False
        assert coordinator.get_metrics()['cancelled'] == 1

    def test_cancel_unknown_or_finished(self, coordinator):
        """Тест отмены неизвестной и завершенной задачи."""
        task = make_task(TaskCategory.CALL)
        coordinator.coordinate(task)

        assert coordinator.cancel("missing") is False
        assert coordinator.cancel(task.id) is False
        assert task.status == TaskStatus.COMPLETED

    def test_cancel_running_task_stays_cancelled(self, coordinator):
        """Тест отмены выполняющейся задачи."""
        task, release, holder, thread = start_blocking_task(coordinator)
        assert task.status == TaskStatus.RUNNING
        assert coordinator.active_task_count() == 1

        assert coordinator.cancel(task.id) is True
        release.set()
        thread.join(2)

        result = holder['result']
        assert task.status == TaskStatus.CANCELLED
        assert result.is_failure()
        assert isinstance(result.error, TaskCancelledError)
        assert result.data == {'cancel_requested': True}
        assert coordinator.active_task_count() == 0

    def test_shed_load_cancels_pending_below_high(self, coordinator):
        """Тест сброса нагрузки."""
        tasks = {
            priority: make_task(TaskCategory.CALL, priority=priority)
            for priority in TaskPriority
        }
        for task in tasks.values():
            coordinator.submit(task)

        shed = coordinator.shed_load(TaskPriority.HIGH)

        assert shed == 2
        assert tasks[TaskPriority.LOW].status == TaskStatus.CANCELLED
        assert tasks[TaskPriority.MEDIUM].status == TaskStatus.CANCELLED
        assert tasks[TaskPriority.HIGH].status == TaskStatus.PENDING
        assert tasks[TaskPriority.CRITICAL].status == TaskStatus.PENDING


class TestWorkerManagement:
    """Тесты управления воркерами."""

    def test_restart_worker(self, coordinator, registry):
        """Тест рестарта воркера."""
        worker = registry.get_worker("call")

        assert coordinator.restart_worker("call") is True
        assert worker.lifecycle == ["start", "stop", "start"]
        assert coordinator.restart_worker("ghost") is False

    def test_metrics_reset(self, coordinator):
        """Тест сброса метрик."""
        coordinator.coordinate(make_task(TaskCategory.CALL))
        coordinator.coordinate(make_task(TaskCategory.CALL, action="fail"))

        metrics = coordinator.get_metrics()
        assert metrics['successful'] == 1
        assert metrics['failed'] == 1
        assert metrics['success_rate'] == 50.0

        coordinator.reset_metrics()
        assert coordinator.get_metrics()['total_coordinated'] == 0
