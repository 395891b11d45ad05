"""
Логирование слоя координации.

Каждая запись помечается компонентом (coordinator, health, emergency, ...),
который вычисляется из имени логгера модуля.
"""

import logging
import sys
import threading
from collections import Counter, deque
from typing import Any, Deque, Dict, List, Optional
from datetime import datetime
from pathlib import Path


PACKAGE_LOGGER = "agent_coordinator"

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(component)-12s | %(threadName)-18s | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def component_of(logger_name: str) -> str:
    """agent_coordinator.core.health -> health, сторонние логгеры -> external."""
    if logger_name != PACKAGE_LOGGER and not logger_name.startswith(PACKAGE_LOGGER + "."):
        return "external"
    parts = logger_name.split(".")
    if len(parts) == 1:
        return "system"
    # Для вложенных логгеров (core.emergency.events) берется модуль
    return parts[2] if len(parts) > 2 else parts[1]


class ComponentFilter(logging.Filter):
    """Добавляет в запись поле component."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'component'):
            record.component = component_of(record.name)
        return True


class LogMetricsHandler(logging.Handler):
    """Счетчики записей по уровням и компонентам плюс последние ошибки."""

    def __init__(self, recent_errors: int = 50):
        super().__init__(level=logging.DEBUG)
        self._lock_metrics = threading.Lock()
        self._by_level: Counter = Counter()
        self._by_component: Counter = Counter()
        self._recent_errors: Deque[Dict[str, Any]] = deque(maxlen=recent_errors)
        self.addFilter(ComponentFilter())

    def emit(self, record: logging.LogRecord):
        with self._lock_metrics:
            self._by_level[record.levelname] += 1
            self._by_component[record.component] += 1
            if record.levelno >= logging.ERROR:
                self._recent_errors.append({
                    'time': datetime.fromtimestamp(record.created).isoformat(),
                    'component': record.component,
                    'message': record.getMessage()
                })

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock_metrics:
            return {
                'total_logs': sum(self._by_level.values()),
                'error_count': self._by_level['ERROR'] + self._by_level['CRITICAL'],
                'warning_count': self._by_level['WARNING'],
                'by_level': dict(self._by_level),
                'by_component': dict(self._by_component),
                'recent_errors': list(self._recent_errors)
            }

    def reset(self):
        with self._lock_metrics:
            self._by_level.clear()
            self._by_component.clear()
            self._recent_errors.clear()


_metrics_handler = LogMetricsHandler()


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True,
    enable_metrics: bool = True
):
    """
    Настройка логгера пакета.

    Обработчики вешаются на логгер agent_coordinator, корневой логгер
    приложения не трогается.

    Args:
        level: Уровень логирования
        log_file: Путь к файлу логов (каталог создается при необходимости)
        enable_console: Вывод в stdout
        enable_metrics: Подсчет записей для get_log_metrics()
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(numeric_level)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: List[logging.Handler] = []

    if enable_console:
        handlers.append(logging.StreamHandler(sys.stdout))

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding='utf-8'))

    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        handler.addFilter(ComponentFilter())
        package_logger.addHandler(handler)

    if enable_metrics:
        package_logger.addHandler(_metrics_handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_log_metrics() -> Dict[str, Any]:
    """Счетчики записей с момента настройки или последнего сброса."""
    return _metrics_handler.get_metrics()


def reset_log_metrics():
    _metrics_handler.reset()


class EventLogger:
    """
    Логгер событий в формате key=value.

    Поля события дополнительно передаются в запись как extra['event_data'],
    чтобы обработчики могли выгружать их без разбора строки.
    """

    def __init__(self, name: str):
        self.logger = get_logger(name)

    @staticmethod
    def _render(event: str, fields: Dict[str, Any]) -> str:
        rendered = " ".join(f"{key}={value!r}" for key, value in fields.items())
        return f"event={event} {rendered}" if rendered else f"event={event}"

    def event(self, event: str, level: int = logging.INFO, **fields):
        data = {'event': event, 'timestamp': datetime.now().isoformat(), **fields}
        self.logger.log(level, self._render(event, fields), extra={'event_data': data})

    def error(self, event: str, error: Exception, **fields):
        fields = {**fields, 'error_type': type(error).__name__, 'error': str(error)}
        data = {'event': event, 'timestamp': datetime.now().isoformat(), **fields}
        self.logger.error(self._render(event, fields), extra={'event_data': data}, exc_info=error)
