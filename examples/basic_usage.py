"""
Базовый пример использования системы координации воркеров.
"""

from agent_coordinator import (
    Emergency,
    EmergencyCategory,
    EmergencySeverity,
    Task,
    TaskCategory,
    TaskPayload,
    TaskPriority,
    create_default_system
)
from agent_coordinator.utils.config import Config


def main():
    """Основная функция с примерами использования."""
    print("=== Базовый пример использования системы координации ===\n")

    config = Config.from_dict({'emergency': {'recovery_delay': 1.0}})

    with create_default_system(config, configure_logging=True) as system:
        print(f"Система запущена с {len(system.registry)} воркерами")

        # Пример 1: Синхронная координация
        print("\n1. Координация задач:")
        call = system.coordinate(Task(
            category=TaskCategory.CALL,
            payload=TaskPayload("make_call", {'phone_number': "+1 555 0100"})
        ))
        print(f"   Звонок: {call.data} (воркер {call.worker_id})")

        spam = system.coordinate(Task(
            category=TaskCategory.MESSAGE,
            payload=TaskPayload("detect_spam", {'content': "WIN a FREE prize, click here"})
        ))
        print(f"   Проверка спама: {spam.data}")

        # Пример 2: Очередь и приоритеты
        print("\n2. Очередь задач:")
        system.submit(Task(
            category=TaskCategory.ANALYTICS,
            payload=TaskPayload("record_event", {'event_type': "call"}),
            priority=TaskPriority.LOW
        ))
        system.submit(Task(
            category=TaskCategory.SECURITY,
            payload=TaskPayload("check_security"),
            priority=TaskPriority.CRITICAL
        ))
        results = system.process_pending()
        print(f"   Обработано задач: {len(results)}")

        # Пример 3: Workflow
        print("\n3. Workflow обработки контакта:")
        workflow = system.execute_workflow(
            "contact_management",
            {'name': "Ann Lee", 'phone': "+1 555 0100", 'email': "ann@example.com"}
        )
        for step in workflow.steps:
            print(f"   {step.step_id}: {step.status.value}")

        # Пример 4: Балансировка и failover
        print("\n4. Балансировка и failover:")
        balance = system.load_balance({'batch': "nightly-report"})
        print(f"   Нагрузка назначена воркеру {balance.target_worker_id}")

        failover = system.failover("call")
        print(f"   Звонки обслуживает {failover.backup_worker_id} "
              f"(переключение за {failover.recovery_time_ms:.1f}ms)")
        system.revert_failover("call")

        # Пример 5: Экстренное событие
        print("\n5. Экстренное событие:")
        system.raise_emergency(Emergency(
            category=EmergencyCategory.PERFORMANCE,
            severity=EmergencySeverity.HIGH,
            description="Queue backlog is growing"
        ))
        print(f"   Событий в журнале: {len(system.get_emergency_logs())}")

        # Вывод состояния
        print("\n=== Здоровье системы ===")
        report = system.get_system_status()
        print(f"Класс здоровья: {report.tier.value}")
        print(f"Общий уровень: {report.overall_status.value}")
        print(f"Подключено: {report.connected_workers}/{report.total_workers}")

        print("\n=== Метрики координации ===")
        metrics = system.get_metrics()['coordinator']
        print(f"Всего задач: {metrics['total_coordinated']}")
        print(f"Успешных: {metrics['successful']}")
        print(f"Процент успеха: {metrics['success_rate']:.1f}%")

    print("\nСистема остановлена")


if __name__ == "__main__":
    main()
