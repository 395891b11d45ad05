"""
Исключения слоя координации агентов.
"""


class CoordinatorError(Exception):
    """Базовое исключение для слоя координации."""
    pass


class NoSuitableWorkerError(CoordinatorError):
    """Для категории задачи не зарегистрирован воркер."""
    pass


class WorkerExecutionError(CoordinatorError):
    """Ошибка, которую сообщил воркер при выполнении задачи."""

    def __init__(self, worker_id: str, message: str):
        super().__init__(message)
        self.worker_id = worker_id


class UnsupportedActionError(WorkerExecutionError):
    """Воркер не поддерживает запрошенное действие."""
    pass


class UnknownTaskError(CoordinatorError):
    """Задача не найдена."""
    pass


class UnknownWorkerError(CoordinatorError):
    """Воркер не найден."""
    pass


class UnknownWorkflowError(CoordinatorError):
    """Workflow не найден."""
    pass


class WorkerUnavailableError(CoordinatorError):
    """Воркер недоступен (не запущен или не ответил на опрос)."""
    pass


class WorkerError(CoordinatorError):
    """Ошибка жизненного цикла воркера (start/stop)."""
    pass


class TaskStateError(CoordinatorError):
    """Недопустимый переход состояния задачи."""
    pass


class TaskCancelledError(CoordinatorError):
    """Задача была отменена во время выполнения."""
    pass


class ConfigurationError(CoordinatorError):
    """Ошибка конфигурации."""
    pass


class ShutdownError(CoordinatorError):
    """Ошибка при завершении работы."""
    pass
