"""
Тесты логирования.
"""

import logging

import pytest

from agent_coordinator.utils.logger import (
    EventLogger,
    PACKAGE_LOGGER,
    component_of,
    get_log_metrics,
    get_logger,
    reset_log_metrics,
    setup_logging
)


@pytest.fixture
def package_logging(tmp_path):
    log_file = tmp_path / "logs" / "coordinator.log"
    setup_logging(level="DEBUG", log_file=str(log_file), enable_console=False)
    reset_log_metrics()
    yield log_file
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.NOTSET)


class TestLogging:
    """Тесты настройки логирования."""

    @pytest.mark.parametrize("name,component", [
        ("agent_coordinator.core.health", "health"),
        ("agent_coordinator.core.emergency.events", "emergency"),
        ("agent_coordinator.exceptions", "exceptions"),
        ("agent_coordinator", "system"),
        ("urllib3.connectionpool", "external"),
    ])
    def test_component_of(self, name, component):
        """Тест вычисления компонента по имени логгера."""
        assert component_of(name) == component

    def test_metrics_by_level_and_component(self, package_logging):
        """Тест счетчиков логов."""
        get_logger("agent_coordinator.core.health").info("poll done")
        get_logger("agent_coordinator.core.coordinator").error("task failed")
        get_logger("agent_coordinator.core.coordinator").warning("slow")

        metrics = get_log_metrics()

        assert metrics['total_logs'] >= 3
        assert metrics['error_count'] >= 1
        assert metrics['by_component']['health'] >= 1
        assert metrics['by_component']['coordinator'] >= 2
        assert "task failed" in [e['message'] for e in metrics['recent_errors']]

    def test_file_output_has_component(self, package_logging):
        """Тест записи в файл."""
        get_logger("agent_coordinator.core.registry").info("registered call")

        content = package_logging.read_text(encoding='utf-8')
        assert "registry" in content
        assert "registered call" in content


class TestEventLogger:
    """Тесты логгера событий."""

    def test_event_fields(self, caplog):
        """Тест формата события."""
        events = EventLogger("agent_coordinator.core.emergency.events")

        with caplog.at_level(logging.WARNING, logger=PACKAGE_LOGGER):
            events.event("emergency_raised", logging.WARNING, severity="HIGH")

        record = caplog.records[-1]
        assert record.getMessage() == "event=emergency_raised severity='HIGH'"
        assert record.event_data['severity'] == "HIGH"

    def test_error_event(self, caplog):
        """Тест события об ошибке."""
        events = EventLogger("agent_coordinator.core.emergency.events")

        with caplog.at_level(logging.ERROR, logger=PACKAGE_LOGGER):
            events.error("emergency_handling_failed", RuntimeError("boom"), emergency_id="e1")

        record = caplog.records[-1]
        assert record.event_data['error_type'] == "RuntimeError"
        assert record.exc_info is not None
