"""
Система конфигурации для слоя координации.
"""

import json
import yaml
import os
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union
from dataclasses import dataclass, field, asdict
from pathlib import Path

from ..core.coordinator import CoordinatorConfig
from ..core.health import HealthConfig
from ..core.emergency import EmergencyConfig
from ..core.workflow import WorkflowConfig
from ..core.graceful_shutdown import ShutdownConfig
from ..exceptions import ConfigurationError


ENV_PREFIX = "AGENT_COORDINATOR_"


@dataclass
class Config:
    """Основная конфигурация системы координации."""

    log_level: str = "INFO"
    log_file: str = ""
    telemetry: str = "process"  # 'process' (psutil) или 'static'

    # Конфигурации компонентов
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    emergency: EmergencyConfig = field(default_factory=EmergencyConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    shutdown: ShutdownConfig = field(default_factory=ShutdownConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Преобразование в словарь (вложенные конфигурации тоже)."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Создание из словаря. Отсутствующие секции получают значения по умолчанию."""
        data = dict(data or {})
        sections = {
            'coordinator': CoordinatorConfig,
            'health': HealthConfig,
            'emergency': EmergencyConfig,
            'workflow': WorkflowConfig,
            'shutdown': ShutdownConfig,
        }

        try:
            components = {
                name: section_cls(**(data.pop(name, None) or {}))
                for name, section_cls in sections.items()
            }
            return cls(**data, **components)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def validate(self) -> bool:
        """Валидация конфигурации."""
        errors = []

        if self.telemetry not in ('process', 'static'):
            errors.append("telemetry must be 'process' or 'static'")

        if self.coordinator.critical_poll_interval <= 0:
            errors.append("coordinator.critical_poll_interval must be > 0")
        if self.coordinator.history_size < 1:
            errors.append("coordinator.history_size must be >= 1")
        if self.coordinator.restart_delay < 0:
            errors.append("coordinator.restart_delay must be >= 0")

        health = self.health
        if health.poll_interval <= 0 or health.boosted_poll_interval <= 0:
            errors.append("health poll intervals must be > 0")
        if health.boosted_poll_interval > health.poll_interval:
            errors.append("health.boosted_poll_interval must not exceed health.poll_interval")
        if health.poll_timeout <= 0:
            errors.append("health.poll_timeout must be > 0")
        if health.poll_workers < 1:
            errors.append("health.poll_workers must be >= 1")
        if health.history_size < 1:
            errors.append("health.history_size must be >= 1")
        if not 0 <= health.error_rate_warning <= health.error_rate_error <= 1:
            errors.append("health error rate thresholds must satisfy 0 <= warning <= error <= 1")
        if not 0 <= health.cpu_warning <= health.cpu_error <= 100:
            errors.append("health cpu thresholds must satisfy 0 <= warning <= error <= 100")

        if self.emergency.recovery_delay < 0:
            errors.append("emergency.recovery_delay must be >= 0")

        if not self.workflow.backup_candidates:
            errors.append("workflow.backup_candidates must not be empty")

        if self.shutdown.drain_timeout < 0:
            errors.append("shutdown.drain_timeout must be >= 0")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

        return True

    def update(self, **kwargs) -> 'Config':
        """Новая конфигурация с обновленными значениями."""
        new_config = self.to_dict()
        new_config.update(kwargs)
        return Config.from_dict(new_config)


CONFIG_FORMATS = {
    '.yaml': 'yaml',
    '.yml': 'yaml',
    '.json': 'json',
}


def _format_of(file_path: Path) -> str:
    fmt = CONFIG_FORMATS.get(file_path.suffix.lower())
    if fmt is None:
        raise ConfigurationError(f"Unsupported configuration file format: {file_path.suffix}")
    return fmt


def load_config(file_path: Union[str, Path]) -> Config:
    """
    Загрузка конфигурации из YAML или JSON файла.

    Raises:
        FileNotFoundError: файла нет
        ConfigurationError: неизвестный формат или невалидные значения
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    fmt = _format_of(file_path)
    with open(file_path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) if fmt == 'yaml' else json.load(f)

    config = Config.from_dict(data or {})
    config.validate()
    return config


def save_config(config: Config, file_path: Union[str, Path]):
    """Сохранение конфигурации; формат определяется расширением файла."""
    file_path = Path(file_path)
    fmt = _format_of(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    with open(file_path, 'w', encoding='utf-8') as f:
        if fmt == 'yaml':
            yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        else:
            json.dump(config.to_dict(), f, indent=2, ensure_ascii=False)


def _csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


# Переменная (без префикса) -> (секция или None для верхнего уровня, поле, преобразование)
ENV_VARIABLES: Dict[str, Tuple[Optional[str], str, Callable[[str], Any]]] = {
    'LOG_LEVEL': (None, 'log_level', str.upper),
    'LOG_FILE': (None, 'log_file', str),
    'TELEMETRY': (None, 'telemetry', str.lower),
    'CRITICAL_POLL_INTERVAL': ('coordinator', 'critical_poll_interval', float),
    'RESTART_DELAY': ('coordinator', 'restart_delay', float),
    'HEALTH_POLL_INTERVAL': ('health', 'poll_interval', float),
    'HEALTH_BOOSTED_POLL_INTERVAL': ('health', 'boosted_poll_interval', float),
    'HEALTH_POLL_WORKERS': ('health', 'poll_workers', int),
    'HEARTBEAT_TIMEOUT': ('health', 'heartbeat_timeout', float),
    'RECOVERY_DELAY': ('emergency', 'recovery_delay', float),
    'BACKUP_CANDIDATES': ('workflow', 'backup_candidates', _csv),
    'DRAIN_TIMEOUT': ('shutdown', 'drain_timeout', float),
}


def load_config_from_env(environ: Optional[Mapping[str, str]] = None) -> Config:
    """
    Конфигурация из переменных окружения AGENT_COORDINATOR_*.

    Незаданные переменные оставляют значения по умолчанию.
    """
    environ = os.environ if environ is None else environ
    data: Dict[str, Any] = {}

    for name, (section, key, convert) in ENV_VARIABLES.items():
        raw = environ.get(ENV_PREFIX + name)
        if not raw:
            continue
        try:
            value = convert(raw)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {ENV_PREFIX + name}: {raw!r}") from e

        if section is None:
            data[key] = value
        else:
            data.setdefault(section, {})[key] = value

    return Config.from_dict(data)


def create_default_config() -> Config:
    return Config()


def merge_configs(base_config: Config, override_config: Config) -> Config:
    """
    Объединение конфигураций.

    Из override берутся только значения, отличающиеся от значений по
    умолчанию; остальное остается из base.
    """
    defaults = Config().to_dict()

    def merge(base: Dict[str, Any], override: Dict[str, Any], default: Dict[str, Any]) -> Dict[str, Any]:
        result = dict(base)
        for key, value in override.items():
            if isinstance(value, dict):
                result[key] = merge(base[key], value, default[key])
            elif value != default[key]:
                result[key] = value
        return result

    return Config.from_dict(merge(base_config.to_dict(), override_config.to_dict(), defaults))
