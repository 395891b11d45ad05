"""
Координатор задач.

Принимает задачу, выбирает воркер через реестр, ведет задачу по жизненному
циклу и возвращает структурированный TaskResult. Сам координатор никогда не
выбрасывает исключений наружу: любая ошибка воркера превращается в
неуспешный результат.
"""

import threading
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional
from dataclasses import dataclass
from datetime import datetime

from .registry import WorkerRegistry
from ..models.task import Task, TaskPriority, TaskResult, TaskStatus
from ..utils.logger import get_logger
from ..exceptions import (
    NoSuitableWorkerError,
    TaskCancelledError,
    TaskStateError,
    UnknownTaskError,
    UnknownWorkerError,
    WorkerError
)


logger = get_logger(__name__)

UNASSIGNED_WORKER = "unknown"


@dataclass
class CoordinatorConfig:
    """Конфигурация координатора."""
    critical_poll_interval: float = 1.0  # Интервал фонового цикла для critical-задач
    history_size: int = 200  # Размер истории завершенных задач
    restart_delay: float = 1.0  # Пауза между stop и start при рестарте воркера
    auto_process_critical: bool = True  # Запускать фоновый цикл при start()
    log_execution_details: bool = True


class TaskCoordinator:
    """Маршрутизация задач по воркерам и учет их жизненного цикла."""

    def __init__(self, registry: WorkerRegistry, config: Optional[CoordinatorConfig] = None):
        self.config = config or CoordinatorConfig()
        self._registry = registry

        # Живая очередь в порядке поступления: pending и running задачи
        self._queue: List[Task] = []
        self._queue_lock = threading.RLock()
        self._task_locks: Dict[str, threading.Lock] = {}
        self._history: Deque[Task] = deque(maxlen=self.config.history_size)

        self._stop_event = threading.Event()
        self._loop_thread: Optional[threading.Thread] = None
        self._paused = threading.Event()

        self._metrics = self._empty_metrics()

        logger.info(f"TaskCoordinator initialized with config: {self.config}")

    @staticmethod
    def _empty_metrics() -> Dict[str, Any]:
        return {
            'total_coordinated': 0,
            'successful': 0,
            'failed': 0,
            'cancelled': 0,
            'routing_failures': 0,
            'total_execution_time_ms': 0.0,
            'average_execution_time_ms': 0.0,
            'max_execution_time_ms': 0.0
        }

    # Фоновый цикл

    def start(self):
        """Запуск фонового цикла обработки critical-задач."""
        if self._loop_thread and self._loop_thread.is_alive():
            logger.warning("Critical task loop already running")
            return

        self._stop_event.clear()
        self._loop_thread = threading.Thread(
            target=self._processing_loop,
            name="critical-task-loop",
            daemon=True
        )
        self._loop_thread.start()
        logger.info("Critical task loop started")

    def stop(self, timeout: float = 5.0):
        """Остановка фонового цикла."""
        self._stop_event.set()
        if self._loop_thread and self._loop_thread.is_alive():
            self._loop_thread.join(timeout=timeout)
            logger.info("Critical task loop stopped")
        self._loop_thread = None

    def is_running(self) -> bool:
        return self._loop_thread is not None and self._loop_thread.is_alive()

    def pause(self):
        """Приостановка выборки из очереди: pending-задачи остаются pending."""
        if not self._paused.is_set():
            self._paused.set()
            logger.warning("Task dispatch paused")

    def resume(self):
        if self._paused.is_set():
            self._paused.clear()
            logger.info("Task dispatch resumed")

    def is_paused(self) -> bool:
        return self._paused.is_set()

    def _processing_loop(self):
        while not self._stop_event.is_set():
            try:
                self.process_critical()
            except Exception as e:
                logger.error(f"Critical task loop error: {e}")
            self._stop_event.wait(self.config.critical_poll_interval)

    # Прием задач

    def submit(self, task: Task) -> str:
        """
        Постановка задачи в очередь без немедленного выполнения.

        Critical-задачи подхватит фоновый цикл, остальные выполняются
        явным вызовом process_pending() в порядке поступления.
        """
        with self._queue_lock:
            if task.status != TaskStatus.PENDING:
                raise TaskStateError(f"Task {task.id} is {task.status.value}, expected pending")
            if any(t.id == task.id for t in self._queue):
                raise TaskStateError(f"Task {task.id} is already queued")
            self._queue.append(task)

        logger.debug(f"Task {task.id} submitted ({task.priority.name})")
        return task.id

    def coordinate(self, task: Task) -> TaskResult:
        """
        Координация задачи: выбор воркера, выполнение, фиксация результата.

        Returns:
            TaskResult; исключения наружу не выходят
        """
        try:
            return self._coordinate(task)
        except Exception as e:
            logger.error(f"Unexpected error while coordinating task {task.id}: {e}")
            return TaskResult(
                task_id=task.id,
                success=False,
                worker_id=task.assigned_worker or UNASSIGNED_WORKER,
                error=e
            )

    def _coordinate(self, task: Task) -> TaskResult:
        task_lock = self._get_task_lock(task.id)

        with task_lock:
            if task.status != TaskStatus.PENDING:
                logger.warning(f"Task {task.id} cannot be coordinated from status {task.status.value}")
                return TaskResult(
                    task_id=task.id,
                    success=False,
                    worker_id=task.assigned_worker or UNASSIGNED_WORKER,
                    error=TaskStateError(f"Task {task.id} is {task.status.value}, expected pending")
                )

            with self._queue_lock:
                if not any(t.id == task.id for t in self._queue):
                    self._queue.append(task)

            if self.config.log_execution_details:
                logger.info(f"Coordinating task {task.id}: {task.description}")

            try:
                worker = self._registry.resolve(task.category)
            except NoSuitableWorkerError as e:
                task.status = TaskStatus.FAILED
                task.error = e
                task.completed_at = datetime.now()
                self._retire(task)
                self._update_metrics(0.0, success=False, routing_failure=True)
                logger.error(f"Task {task.id} failed: {e}")
                return TaskResult(
                    task_id=task.id,
                    success=False,
                    worker_id=UNASSIGNED_WORKER,
                    error=e,
                    execution_time_ms=0.0
                )

            task.assigned_worker = worker.id
            task.status = TaskStatus.RUNNING
            task.started_at = datetime.now()

        # Выполнение идет без удержания замков: прием новых задач не блокируется
        start_time = time.time()
        data = None
        error: Optional[Exception] = None
        try:
            data = worker.execute_task(task)
        except Exception as e:
            error = e
        execution_time_ms = (time.time() - start_time) * 1000

        with task_lock:
            if task.status == TaskStatus.CANCELLED:
                # Отмена во время выполнения: отчет воркера сохраняется, статус остается cancelled
                task.result = data
                result = TaskResult(
                    task_id=task.id,
                    success=False,
                    worker_id=worker.id,
                    data=data,
                    error=task.error or TaskCancelledError(f"Task {task.id} was cancelled"),
                    execution_time_ms=execution_time_ms
                )
            elif error is None:
                task.status = TaskStatus.COMPLETED
                task.result = data
                task.completed_at = datetime.now()
                self._retire(task)
                result = TaskResult(
                    task_id=task.id,
                    success=True,
                    worker_id=worker.id,
                    data=data,
                    execution_time_ms=execution_time_ms
                )
            else:
                task.status = TaskStatus.FAILED
                task.error = error
                task.completed_at = datetime.now()
                self._retire(task)
                result = TaskResult(
                    task_id=task.id,
                    success=False,
                    worker_id=worker.id,
                    error=error,
                    execution_time_ms=execution_time_ms
                )

        self._registry.record_execution(worker.id, execution_time_ms, result.success)
        self._update_metrics(execution_time_ms, result.success)

        if result.success:
            if self.config.log_execution_details:
                logger.info(f"Task {task.id} completed by {worker.id} in {execution_time_ms:.1f}ms")
        else:
            logger.error(f"Task {task.id} failed on {worker.id}: {result.error}")

        return result

    def process_critical(self) -> List[TaskResult]:
        """Выполнение всех pending-задач с приоритетом critical (пусто на паузе)."""
        if self.is_paused():
            return []

        with self._queue_lock:
            critical = [
                t for t in self._queue
                if t.status == TaskStatus.PENDING and t.priority == TaskPriority.CRITICAL
            ]

        if critical:
            logger.info(f"Processing {len(critical)} critical pending tasks")
        return [self.coordinate(task) for task in critical]

    def process_pending(self) -> List[TaskResult]:
        """Сначала critical-задачи, затем остальные в порядке поступления."""
        if self.is_paused():
            logger.info("Task dispatch is paused, pending tasks left in queue")
            return []

        results = self.process_critical()

        with self._queue_lock:
            pending = [t for t in self._queue if t.status == TaskStatus.PENDING]

        results.extend(self.coordinate(task) for task in pending)
        return results

    # Отмена

    def cancel(self, task_id: str, reason: str = "") -> bool:
        """
        Отмена задачи из живой очереди.

        Returns:
            False, если задача неизвестна или уже завершена
        """
        with self._queue_lock:
            task = next((t for t in self._queue if t.id == task_id), None)

        if task is None:
            logger.warning(f"Cannot cancel task {task_id}: not in queue")
            return False

        with self._get_task_lock(task_id):
            if task.status.is_terminal:
                return False

            if task.assigned_worker:
                worker = self._registry.find_worker(task.assigned_worker)
                if worker is not None:
                    try:
                        worker.cancel_task(task_id)
                    except Exception as e:
                        logger.error(f"Worker {worker.id} failed to cancel task {task_id}: {e}")

            task.status = TaskStatus.CANCELLED
            task.completed_at = datetime.now()
            task.error = TaskCancelledError(reason or f"Task {task_id} was cancelled")
            self._retire(task)

        with self._queue_lock:
            self._metrics['cancelled'] += 1

        logger.info(f"Task {task_id} cancelled{': ' + reason if reason else ''}")
        return True

    def shed_load(self, min_priority: TaskPriority = TaskPriority.HIGH) -> int:
        """Сброс pending-задач с приоритетом ниже min_priority."""
        with self._queue_lock:
            victims = [
                t for t in self._queue
                if t.status == TaskStatus.PENDING and t.priority < min_priority
            ]

        shed = sum(1 for task in victims if self.cancel(task.id, reason="load shedding"))
        logger.warning(f"Load shedding discarded {shed} pending tasks below {min_priority.name}")
        return shed

    # Управление воркерами

    def restart_worker(self, worker_id: str) -> bool:
        """Рестарт воркера: stop, пауза, start."""
        try:
            worker = self._registry.get_worker(worker_id)
            logger.info(f"Restarting worker {worker_id}")
            worker.stop()
            time.sleep(self.config.restart_delay)
            worker.start()
        except (UnknownWorkerError, WorkerError) as e:
            logger.error(f"Restart of worker {worker_id} failed: {e}")
            return False

        logger.info(f"Worker {worker_id} restarted successfully")
        return True

    # Запросы

    def get_task_queue(self) -> List[Task]:
        """Снимок живой очереди."""
        with self._queue_lock:
            return list(self._queue)

    def get_task(self, task_id: str) -> Task:
        with self._queue_lock:
            for task in list(self._queue) + list(self._history):
                if task.id == task_id:
                    return task
        raise UnknownTaskError(f"Task {task_id} not found")

    def get_history(self) -> List[Task]:
        with self._queue_lock:
            return list(self._history)

    def active_task_count(self) -> int:
        with self._queue_lock:
            return sum(1 for t in self._queue if t.status == TaskStatus.RUNNING)

    def pending_task_count(self) -> int:
        with self._queue_lock:
            return sum(1 for t in self._queue if t.status == TaskStatus.PENDING)

    def get_metrics(self) -> Dict[str, Any]:
        """Получение метрик координации."""
        with self._queue_lock:
            metrics = self._metrics.copy()
            metrics['queue_size'] = len(self._queue)
            metrics['history_size'] = len(self._history)

        total = metrics['total_coordinated']
        metrics['success_rate'] = (metrics['successful'] / total) * 100 if total > 0 else 0.0
        return metrics

    def reset_metrics(self):
        with self._queue_lock:
            self._metrics = self._empty_metrics()

    # Внутренние методы

    def _get_task_lock(self, task_id: str) -> threading.Lock:
        with self._queue_lock:
            lock = self._task_locks.get(task_id)
            if lock is None:
                lock = self._task_locks[task_id] = threading.Lock()
            return lock

    def _retire(self, task: Task):
        """Перенос завершенной задачи из очереди в историю."""
        with self._queue_lock:
            self._queue = [t for t in self._queue if t.id != task.id]
            self._history.append(task)
            self._task_locks.pop(task.id, None)

    def _update_metrics(self, execution_time_ms: float, success: bool, routing_failure: bool = False):
        with self._queue_lock:
            self._metrics['total_coordinated'] += 1
            if success:
                self._metrics['successful'] += 1
            else:
                self._metrics['failed'] += 1
            if routing_failure:
                self._metrics['routing_failures'] += 1
                return

            self._metrics['total_execution_time_ms'] += execution_time_ms
            self._metrics['max_execution_time_ms'] = max(
                self._metrics['max_execution_time_ms'],
                execution_time_ms
            )
            executed = self._metrics['total_coordinated'] - self._metrics['routing_failures']
            self._metrics['average_execution_time_ms'] = (
                self._metrics['total_execution_time_ms'] / executed
            )

    def __repr__(self) -> str:
        return (f"TaskCoordinator(queue={len(self._queue)}, "
                f"history={len(self._history)}, running={self.is_running()})")
