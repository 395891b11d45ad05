"""
Тесты обработчика экстренных событий.
"""

from unittest.mock import Mock

import pytest

from agent_coordinator.core.coordinator import TaskCoordinator, CoordinatorConfig
from agent_coordinator.core.emergency import EmergencyHandler, EmergencyConfig, RECOVERY_RESOLUTION
from agent_coordinator.core.health import HealthAggregator, HealthConfig
from agent_coordinator.models.emergency import Emergency, EmergencyCategory, EmergencySeverity
from agent_coordinator.models.health import HealthAlert, HealthLevel
from agent_coordinator.models.task import TaskCategory, TaskPriority, TaskStatus
from agent_coordinator.models.worker import WorkerState

from conftest import make_task, wait_until


def emergency(severity: EmergencySeverity, category=EmergencyCategory.SYSTEM) -> Emergency:
    return Emergency(category=category, severity=severity, description=f"{severity.name} test event")


@pytest.fixture
def parts(registry):
    coordinator = TaskCoordinator(registry, CoordinatorConfig(restart_delay=0.0))
    aggregator = HealthAggregator(registry, HealthConfig(poll_interval=60.0, boosted_poll_interval=5.0))
    return registry, coordinator, aggregator


@pytest.fixture
def handler(parts):
    registry, coordinator, aggregator = parts
    handler = EmergencyHandler(registry, coordinator, aggregator, EmergencyConfig(recovery_delay=0.05))
    yield handler
    handler.cancel_pending_recovery()


class TestCriticalEmergency:
    """Тесты критических событий."""

    def test_halt_then_single_recovery(self, handler, parts):
        """Тест остановки всех воркеров и автоматического восстановления."""
        registry, _, aggregator = parts
        workers = registry.get_workers()
        event = emergency(EmergencySeverity.CRITICAL)

        assert handler.raise_emergency(event) is True

        assert all(w.state == WorkerState.STOPPED for w in workers)
        assert aggregator.get_system_status().overall_status == HealthLevel.MAINTENANCE
        assert handler.is_recovery_pending()

        assert handler.wait_for_recovery(2)

        assert all(w.lifecycle == ["start", "stop", "start"] for w in workers)
        assert all(w.state == WorkerState.RUNNING for w in workers)
        assert not aggregator.is_maintenance()
        assert event.resolved
        assert event.resolution == RECOVERY_RESOLUTION
        assert handler.get_active_emergencies() == []

    def test_failed_recovery_is_not_retried(self, handler, parts):
        """Тест неудачной попытки восстановления."""
        registry, _, _ = parts
        broken = registry.get_worker("message")
        broken._on_start = Mock(side_effect=RuntimeError("still broken"))
        event = emergency(EmergencySeverity.CRITICAL)

        handler.raise_emergency(event)

        assert handler.wait_for_recovery(2)

        assert broken._on_start.call_count == 1
        assert broken.state == WorkerState.ERROR
        assert not event.resolved
        assert handler.get_active_emergencies() == [event]

    def test_concurrent_critical_events_share_recovery(self, handler):
        """Тест общего восстановления для нескольких событий."""
        first = emergency(EmergencySeverity.CRITICAL)
        second = emergency(EmergencySeverity.CRITICAL, EmergencyCategory.SECURITY)

        handler.raise_emergency(first)
        handler.raise_emergency(second)

        assert handler.wait_for_recovery(2)
        assert first.resolved and second.resolved

    def test_critical_task_waits_for_recovery(self, registry):
        """Тест critical-задачи, поступившей во время аварийной остановки."""
        coordinator = TaskCoordinator(registry, CoordinatorConfig(critical_poll_interval=0.01))
        aggregator = HealthAggregator(registry, HealthConfig(poll_interval=60.0))
        handler = EmergencyHandler(registry, coordinator, aggregator, EmergencyConfig(recovery_delay=0.2))
        coordinator.start()
        try:
            handler.raise_emergency(emergency(EmergencySeverity.CRITICAL))
            task = make_task(TaskCategory.CALL, priority=TaskPriority.CRITICAL)
            coordinator.submit(task)

            assert coordinator.is_paused()
            assert not wait_until(lambda: task.status != TaskStatus.PENDING, timeout=0.1)

            assert handler.wait_for_recovery(2)
            assert wait_until(lambda: task.status == TaskStatus.COMPLETED)
            assert not coordinator.is_paused()
        finally:
            coordinator.stop()
            handler.cancel_pending_recovery()

    def test_failed_recovery_keeps_dispatch_paused(self, handler, parts):
        """Тест очереди после неудачного восстановления."""
        registry, coordinator, _ = parts
        registry.get_worker("message")._on_start = Mock(side_effect=RuntimeError("still broken"))
        task = make_task(TaskCategory.CALL)
        coordinator.submit(task)

        handler.raise_emergency(emergency(EmergencySeverity.CRITICAL))
        assert handler.wait_for_recovery(2)

        assert coordinator.is_paused()
        assert coordinator.process_pending() == []
        assert task.status == TaskStatus.PENDING

    def test_poll_during_halt_keeps_queued_tasks(self, handler, parts):
        """Тест опроса здоровья во время аварийной остановки."""
        registry, coordinator, aggregator = parts
        aggregator.set_on_alert(handler.handle_alert)
        aggregator.poll_once()
        queued = make_task(TaskCategory.CALL, priority=TaskPriority.MEDIUM)
        coordinator.submit(queued)

        handler.raise_emergency(emergency(EmergencySeverity.CRITICAL))
        aggregator.poll_once()

        severities = [e.severity for e in handler.get_emergency_logs()]
        assert severities == [EmergencySeverity.CRITICAL]
        assert queued.status == TaskStatus.PENDING

        assert handler.wait_for_recovery(2)
        coordinator.process_pending()
        assert queued.status == TaskStatus.COMPLETED

    def test_cancel_pending_recovery(self, parts):
        """Тест отмены запланированного восстановления."""
        registry, coordinator, aggregator = parts
        handler = EmergencyHandler(registry, coordinator, aggregator, EmergencyConfig(recovery_delay=10))

        handler.raise_emergency(emergency(EmergencySeverity.CRITICAL))
        handler.cancel_pending_recovery()

        assert not handler.is_recovery_pending()
        assert all(w.state == WorkerState.STOPPED for w in registry.get_workers())


class TestLowerSeverities:
    """Тесты событий high, medium и low."""

    def test_high_sheds_pending_tasks_below_high(self, handler, parts):
        """Тест сброса нагрузки."""
        _, coordinator, _ = parts
        low = make_task(TaskCategory.CALL, priority=TaskPriority.LOW)
        high = make_task(TaskCategory.CALL, priority=TaskPriority.HIGH)
        coordinator.submit(low)
        coordinator.submit(high)

        assert handler.raise_emergency(emergency(EmergencySeverity.HIGH))

        assert low.status == TaskStatus.CANCELLED
        assert high.status == TaskStatus.PENDING

    def test_medium_boosts_monitoring(self, handler, parts):
        """Тест учащения мониторинга."""
        _, _, aggregator = parts
        aggregator.start()
        try:
            assert wait_until(lambda: aggregator.seconds_until_next_poll() > 10)
            handler.raise_emergency(emergency(EmergencySeverity.MEDIUM, EmergencyCategory.NETWORK))
            assert aggregator.seconds_until_next_poll() <= 5.0
        finally:
            aggregator.stop()

    def test_low_is_only_logged(self, handler, parts):
        """Тест события low."""
        registry, coordinator, aggregator = parts
        pending = make_task(TaskCategory.CALL, priority=TaskPriority.LOW)
        coordinator.submit(pending)

        assert handler.raise_emergency(emergency(EmergencySeverity.LOW, EmergencyCategory.PERFORMANCE))

        assert pending.status == TaskStatus.PENDING
        assert all(w.state == WorkerState.RUNNING for w in registry.get_workers())
        assert len(handler.get_emergency_logs()) == 1


class TestEmergencyLog:
    """Тесты журнала событий."""

    def test_every_event_is_logged(self, handler):
        """Тест записи всех событий в журнал."""
        events = [emergency(s) for s in (EmergencySeverity.LOW, EmergencySeverity.MEDIUM)]
        for event in events:
            handler.raise_emergency(event)

        logs = handler.get_emergency_logs()
        assert isinstance(logs, tuple)
        assert list(logs) == events

    def test_handler_failure_is_reported_and_logged(self, registry):
        """Тест внутренней ошибки обработки."""
        coordinator = Mock()
        coordinator.shed_load.side_effect = RuntimeError("queue locked")
        handler = EmergencyHandler(registry, coordinator, Mock())
        event = emergency(EmergencySeverity.HIGH)

        assert handler.raise_emergency(event) is False
        assert handler.get_emergency_logs() == (event,)

    def test_manual_resolution(self, handler):
        """Тест ручного разрешения."""
        event = emergency(EmergencySeverity.LOW)
        handler.raise_emergency(event)

        assert handler.resolve(event.id, "false alarm") is True
        assert event.resolution == "false alarm"
        assert handler.resolve(event.id, "again") is False
        assert handler.resolve("missing", "x") is False

    def test_health_alert_becomes_emergency(self, handler):
        """Тест преобразования алерта здоровья."""
        alert = HealthAlert(
            key="call:slow_response",
            message="Worker call response time is 9000ms",
            category=EmergencyCategory.PERFORMANCE,
            severity=EmergencySeverity.LOW,
            worker_id="call"
        )

        assert handler.handle_alert(alert)

        logged = handler.get_emergency_logs()[-1]
        assert logged.source == "health:call:slow_response"
        assert logged.category == EmergencyCategory.PERFORMANCE
        assert logged.severity == EmergencySeverity.LOW
