"""
Интеграционные тесты системы координации.
"""

from unittest.mock import Mock

import pytest

from agent_coordinator import (
    Config,
    CoordinationSystem,
    Emergency,
    EmergencyCategory,
    EmergencySeverity,
    HealthLevel,
    HealthTier,
    Task,
    TaskCategory,
    TaskPayload,
    TaskPriority,
    TaskStatus,
    create_default_system
)
from agent_coordinator.core.graceful_shutdown import GracefulShutdown, ShutdownConfig, ShutdownPhase
from agent_coordinator.core.system import SystemState
from agent_coordinator.models.workflow import WorkflowStatus
from agent_coordinator.exceptions import CoordinatorError, ShutdownError

from conftest import make_worker, start_blocking_task, wait_until


def fast_config(**sections) -> Config:
    data = {
        'telemetry': "static",
        'coordinator': {'critical_poll_interval': 0.02, 'restart_delay': 0.0},
        'health': {'poll_interval': 60.0, 'boosted_poll_interval': 1.0, 'tick_interval': 0.02},
        'emergency': {'recovery_delay': 0.05},
        'shutdown': {'drain_timeout': 0.2, 'poll_interval': 0.01},
    }
    data.update(sections)
    return Config.from_dict(data)


@pytest.fixture
def system():
    system = create_default_system(fast_config())
    system.start()
    # Первый цикл опроса выполняется сразу после запуска
    assert wait_until(lambda: system.aggregator.seconds_until_next_poll() > 10)
    yield system
    system.stop()


class TestCoordinationSystem:
    """Тесты системы целиком."""

    def test_default_system_has_eight_workers(self, system):
        """Тест набора воркеров по умолчанию."""
        assert len(system.registry) == 8
        assert system.state == SystemState.RUNNING

        report = system.get_system_status()
        assert report.tier == HealthTier.EXCELLENT
        assert report.overall_status == HealthLevel.HEALTHY
        assert len(system.get_worker_statuses()) == 8

    def test_coordinate_task(self, system):
        """Тест координации задачи."""
        task = Task(category=TaskCategory.CALL, payload=TaskPayload("make_call", {'phone_number': "+1"}))

        result = system.coordinate(task)

        assert result.is_success()
        assert result.worker_id == "call"
        assert system.get_task(task.id).status == TaskStatus.COMPLETED

    def test_critical_task_is_picked_up_in_background(self, system):
        """Тест фоновой обработки critical-задачи."""
        task = Task(
            category=TaskCategory.SECURITY,
            payload=TaskPayload("scan_for_threats", {'content': "hello"}),
            priority=TaskPriority.CRITICAL
        )
        system.submit(task)

        assert wait_until(lambda: task.status == TaskStatus.COMPLETED)

    def test_process_pending_and_cancel(self, system):
        """Тест очереди и отмены."""
        kept = system.submit(Task(category=TaskCategory.AI, payload=TaskPayload("process_text")))
        dropped = system.submit(Task(category=TaskCategory.AI, payload=TaskPayload("process_text")))

        assert system.cancel(dropped)
        results = system.process_pending()

        assert [r.task_id for r in results] == [kept]
        assert system.get_task(dropped).status == TaskStatus.CANCELLED

    def test_workflow_and_failover(self, system):
        """Тест workflow и failover через систему."""
        assert system.execute_workflow("message_handling", {'content': "great meeting"}).is_success()

        failover = system.failover("call")
        assert failover.backup_worker_id == "ai"
        system.revert_failover("call")
        assert system.registry.resolve(TaskCategory.CALL).id == "call"

    def test_critical_emergency_halts_and_recovers(self, system):
        """Тест критического события."""
        event = Emergency(
            category=EmergencyCategory.SECURITY,
            severity=EmergencySeverity.CRITICAL,
            description="Intrusion detected"
        )

        assert system.raise_emergency(event)
        assert system.get_system_status().overall_status == HealthLevel.MAINTENANCE

        assert system.emergency_handler.wait_for_recovery(2)
        assert event.resolved
        assert all(s.is_running() for s in system.get_worker_statuses())
        assert system.get_emergency_logs() == (event,)

    def test_halt_keeps_queued_work_and_stopped_workflows(self):
        """Тест очереди и workflow после критического события."""
        system = create_default_system(fast_config(emergency={'recovery_delay': 0.5}))
        system.start()
        urgent = Task(
            category=TaskCategory.CALL,
            payload=TaskPayload("make_call", {'phone_number': "+1 555 0199"}),
            priority=TaskPriority.CRITICAL
        )
        try:
            system.engine.stop_workflow("call_processing")
            system.raise_emergency(Emergency(
                category=EmergencyCategory.SYSTEM,
                severity=EmergencySeverity.CRITICAL,
                description="Database corrupted"
            ))
            system.submit(urgent)
            system.poll_health()

            assert urgent.status == TaskStatus.PENDING
            assert system.emergency_handler.wait_for_recovery(2)
            assert wait_until(lambda: urgent.status == TaskStatus.COMPLETED)
            assert [e.severity for e in system.get_emergency_logs()] == [EmergencySeverity.CRITICAL]

            statuses = {w.id: w.status for w in system.engine.get_workflows()}
            assert statuses.pop("call_processing") == WorkflowStatus.STOPPED
            assert set(statuses.values()) == {WorkflowStatus.ACTIVE}
        finally:
            system.stop()

    def test_health_alerts_reach_emergency_handler(self, system):
        """Тест передачи алертов здоровья в обработчик событий."""
        for worker_id in ("backup", "analytics", "security"):
            system.registry.get_worker(worker_id).stop()

        assert system.poll_health().tier == HealthTier.POOR
        assert wait_until(
            lambda: "health:system:poor_health" in [e.source for e in system.get_emergency_logs()]
        )

    def test_metrics(self, system):
        """Тест сводных метрик."""
        system.coordinate(Task(category=TaskCategory.ANALYTICS, payload=TaskPayload("record_event")))

        metrics = system.get_metrics()
        assert metrics['state'] == "running"
        assert metrics['coordinator']['total_coordinated'] == 1
        assert metrics['registry']['total_workers'] == 8

    def test_start_twice_is_rejected(self, system):
        """Тест повторного запуска."""
        with pytest.raises(CoordinatorError):
            system.start()


class TestSystemShutdown:
    """Тесты остановки системы."""

    def test_context_manager(self):
        """Тест контекстного менеджера."""
        with create_default_system(fast_config()) as system:
            assert system.is_running()
            assert system.coordinator.is_running()

        assert system.state == SystemState.STOPPED
        assert not system.coordinator.is_running()
        assert not system.aggregator.is_running()
        assert not any(s.is_running() for s in system.get_worker_statuses())

    def test_tasks_are_rejected_after_stop(self):
        """Тест отказа в приеме задач после остановки."""
        system = create_default_system(fast_config())
        system.start()
        system.stop()

        result = system.coordinate(Task(category=TaskCategory.CALL, payload=TaskPayload("make_call")))

        assert isinstance(result.error, ShutdownError)
        with pytest.raises(ShutdownError):
            system.submit(Task(category=TaskCategory.CALL, payload=TaskPayload("make_call")))

    def test_restart_after_stop(self):
        """Тест повторного запуска после остановки."""
        system = create_default_system(fast_config())
        system.start()
        system.stop()
        system.start()
        try:
            result = system.coordinate(Task(category=TaskCategory.AI, payload=TaskPayload("process_text")))
            assert result.is_success()
        finally:
            system.stop()

    def test_running_task_is_cancelled_after_drain_timeout(self):
        """Тест отмены задачи, не завершившейся за время дренажа."""
        system = CoordinationSystem(fast_config())
        system.register_worker(make_worker(TaskCategory.CALL, start=False))
        system.start()

        task, release, holder, thread = start_blocking_task(system.coordinator)
        status = system.stop()
        release.set()
        thread.join(2)

        assert status.completed
        assert status.tasks_cancelled == 1
        assert task.status == TaskStatus.CANCELLED
        assert holder['result'].is_failure()

    def test_stop_when_not_running(self):
        """Тест остановки незапущенной системы."""
        assert create_default_system(fast_config()).stop() is None


class TestGracefulShutdown:
    """Тесты менеджера остановки."""

    def test_execute_requires_initiation(self):
        """Тест выполнения без инициации."""
        with pytest.raises(ShutdownError):
            GracefulShutdown().execute_shutdown()

    def test_phases_run_in_order(self):
        """Тест порядка фаз."""
        calls = []
        shutdown = GracefulShutdown(ShutdownConfig(drain_timeout=1.0, poll_interval=0.01))
        shutdown.add_cleanup_callback(lambda: calls.append("cleanup"))

        shutdown.initiate_shutdown()
        status = shutdown.execute_shutdown(
            stop_intake=lambda: calls.append("intake"),
            count_running=lambda: calls.append("drain") or 0,
            stop_workers=lambda: calls.append("workers") or []
        )

        assert calls == ["intake", "drain", "workers", "cleanup"]
        assert status.phase == ShutdownPhase.COMPLETED
        assert status.cleanup_callbacks_executed == 1
        assert shutdown.wait_for_completion(0.1)

    def test_phase_errors_are_counted(self):
        """Тест ошибок в фазах."""
        shutdown = GracefulShutdown()
        shutdown.initiate_shutdown()

        status = shutdown.execute_shutdown(
            stop_intake=Mock(side_effect=RuntimeError("stuck")),
            stop_workers=Mock(return_value=["call"])
        )

        assert status.completed
        assert status.error_count == 1
        assert status.workers_failed == ["call"]

    def test_drain_timeout_triggers_cancellation(self):
        """Тест отмены по таймауту дренажа."""
        shutdown = GracefulShutdown(ShutdownConfig(drain_timeout=0.05, poll_interval=0.01))
        cancel = Mock(return_value=3)
        shutdown.initiate_shutdown()

        status = shutdown.execute_shutdown(count_running=lambda: 1, cancel_running=cancel)

        cancel.assert_called_once()
        assert status.tasks_cancelled == 3
