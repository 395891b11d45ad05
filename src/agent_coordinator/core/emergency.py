"""
Обработчик экстренных событий.

Реакция определяется серьезностью события:

- critical: остановка всех воркеров, режим обслуживания и через
  recovery_delay одна попытка автоматического перезапуска. Неудачная
  попытка только логируется, событие остается неразрешенным.
- high: сброс pending-задач ниже приоритета high.
- medium: учащение мониторинга.
- low: только запись в лог.

Все события попадают в журнал только на добавление, независимо от исхода.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple
from dataclasses import dataclass

from .coordinator import TaskCoordinator
from .health import HealthAggregator
from .registry import WorkerRegistry
from ..models.emergency import Emergency, EmergencySeverity
from ..models.health import HealthAlert
from ..models.task import TaskPriority
from ..utils.logger import get_logger, EventLogger


logger = get_logger(__name__)
events = EventLogger(f"{__name__}.events")

RECOVERY_RESOLUTION = "Automatic recovery successful"


@dataclass
class EmergencyConfig:
    """Конфигурация обработчика экстренных событий."""
    recovery_delay: float = 5.0  # Пауза между аварийной остановкой и попыткой перезапуска
    forward_health_alerts: bool = True  # Превращать алерты здоровья в экстренные события


class EmergencyHandler:
    """Классификация и обработка экстренных событий."""

    def __init__(
        self,
        registry: WorkerRegistry,
        coordinator: TaskCoordinator,
        aggregator: HealthAggregator,
        config: Optional[EmergencyConfig] = None
    ):
        self.config = config or EmergencyConfig()
        self._registry = registry
        self._coordinator = coordinator
        self._aggregator = aggregator

        self._lock = threading.Lock()
        self._log: List[Emergency] = []
        self._awaiting_recovery: List[Emergency] = []
        self._recovery_timer: Optional[threading.Timer] = None
        self._recovery_done = threading.Event()
        self._recovery_done.set()

        self._handlers: Dict[EmergencySeverity, Callable[[Emergency], None]] = {
            EmergencySeverity.CRITICAL: self._handle_critical,
            EmergencySeverity.HIGH: self._handle_high,
            EmergencySeverity.MEDIUM: self._handle_medium,
            EmergencySeverity.LOW: self._handle_low
        }

        logger.info(f"EmergencyHandler initialized with config: {self.config}")

    def raise_emergency(self, emergency: Emergency) -> bool:
        """
        Обработка экстренного события.

        Returns:
            True, если обработка завершилась без внутренней ошибки
        """
        with self._lock:
            self._log.append(emergency)

        events.event(
            "emergency_raised",
            logging.WARNING,
            emergency_id=emergency.id,
            category=emergency.category.value,
            severity=emergency.severity.name,
            source=emergency.source,
            description=emergency.description
        )

        try:
            self._handlers[emergency.severity](emergency)
        except Exception as e:
            events.error("emergency_handling_failed", e, emergency_id=emergency.id)
            return False

        return True

    def handle_alert(self, alert: HealthAlert) -> bool:
        """Callback для агрегатора здоровья: алерт -> экстренное событие."""
        if not self.config.forward_health_alerts:
            return True

        emergency = Emergency(
            category=alert.category,
            severity=alert.severity,
            description=alert.message,
            source=f"health:{alert.key}"
        )
        return self.raise_emergency(emergency)

    # Реакции по серьезности

    def _handle_critical(self, emergency: Emergency):
        self._coordinator.pause()
        failed = self._registry.stop_all()
        self._aggregator.set_maintenance(True)

        logger.critical(
            f"CRITICAL EMERGENCY {emergency.id}: all workers halted "
            f"({len(failed)} failed to stop cleanly)"
        )

        with self._lock:
            self._awaiting_recovery.append(emergency)
            if self._recovery_timer is not None:
                logger.info(f"Recovery already scheduled, emergency {emergency.id} will share it")
                return
            self._schedule_recovery()

    def _schedule_recovery(self):
        """Планирование попытки восстановления. Вызывается под self._lock."""
        self._recovery_done.clear()
        self._recovery_timer = threading.Timer(self.config.recovery_delay, self._attempt_recovery)
        self._recovery_timer.name = "emergency-recovery"
        self._recovery_timer.daemon = True
        self._recovery_timer.start()
        logger.info(f"Automatic recovery scheduled in {self.config.recovery_delay}s")

    def _attempt_recovery(self):
        """Единственная попытка перезапуска, без повторов."""
        with self._lock:
            emergencies, self._awaiting_recovery = self._awaiting_recovery, []
            self._recovery_timer = None

        try:
            failed = self._registry.start_all()
            self._aggregator.set_maintenance(False)

            if failed:
                logger.error(
                    f"Automatic recovery failed for workers {failed}; "
                    f"{len(emergencies)} emergencies left unresolved"
                )
                return

            with self._lock:
                # Новое critical-событие снова остановило воркеры
                if self._recovery_timer is None:
                    self._coordinator.resume()

            for emergency in emergencies:
                emergency.resolve(RECOVERY_RESOLUTION)
            logger.info(f"Automatic recovery successful, {len(emergencies)} emergencies resolved")

        except Exception as e:
            logger.error(f"Automatic recovery failed: {e}")
        finally:
            with self._lock:
                # Новое critical-событие могло запланировать следующую попытку
                if self._recovery_timer is None:
                    self._recovery_done.set()

    def _handle_high(self, emergency: Emergency):
        shed = self._coordinator.shed_load(TaskPriority.HIGH)
        logger.warning(f"HIGH EMERGENCY {emergency.id}: reduced system load, {shed} tasks discarded")

    def _handle_medium(self, emergency: Emergency):
        self._aggregator.boost_monitoring()
        logger.warning(f"MEDIUM EMERGENCY {emergency.id}: increased monitoring")

    def _handle_low(self, emergency: Emergency):
        logger.info(f"LOW EMERGENCY {emergency.id}: logged for review")

    # Журнал

    def get_emergency_logs(self) -> Tuple[Emergency, ...]:
        """Журнал событий только для чтения."""
        with self._lock:
            return tuple(self._log)

    def get_active_emergencies(self) -> List[Emergency]:
        with self._lock:
            return [e for e in self._log if not e.resolved]

    def resolve(self, emergency_id: str, resolution: str) -> bool:
        """Ручное разрешение события."""
        with self._lock:
            emergency = next((e for e in self._log if e.id == emergency_id), None)
            if emergency is None or emergency.resolved:
                return False
            emergency.resolve(resolution)

        logger.info(f"Emergency {emergency_id} resolved: {resolution}")
        return True

    def is_recovery_pending(self) -> bool:
        return not self._recovery_done.is_set()

    def wait_for_recovery(self, timeout: Optional[float] = None) -> bool:
        """
        Ожидание завершения запланированной попытки восстановления.

        Returns:
            True если попытка завершилась (или не планировалась), False если таймаут
        """
        return self._recovery_done.wait(timeout)

    def cancel_pending_recovery(self):
        """Отмена запланированного восстановления при остановке системы."""
        with self._lock:
            timer = self._recovery_timer
            self._recovery_timer = None
            if timer is not None:
                timer.cancel()
                self._recovery_done.set()

        if timer is not None:
            logger.info("Pending automatic recovery cancelled")

    def __repr__(self) -> str:
        return (f"EmergencyHandler(logged={len(self._log)}, "
                f"recovery_pending={self.is_recovery_pending()})")
