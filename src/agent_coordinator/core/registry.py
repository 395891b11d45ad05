"""
Реестр воркеров: маршрутизация категорий и таблица подключений.
"""

import threading
from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta

from .worker import BaseWorker
from ..models.task import TaskCategory
from ..models.worker import (
    ConnectionState,
    ExecutionSample,
    WorkerConnection,
    WorkerStatus
)
from ..utils.logger import get_logger
from ..exceptions import (
    ConfigurationError,
    NoSuitableWorkerError,
    UnknownWorkerError,
    WorkerError
)


logger = get_logger(__name__)


class WorkerRegistry:
    """
    Статическая карта категория -> воркер плюс живая таблица подключений.

    Чтения возвращают копии, записи сериализуются общим замком.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._workers: Dict[str, BaseWorker] = {}
        self._categories: Dict[TaskCategory, str] = {}
        self._routes: Dict[TaskCategory, str] = {}
        self._connections: Dict[str, WorkerConnection] = {}
        self._failovers: Dict[str, str] = {}

        logger.info("WorkerRegistry initialized")

    def register(self, worker: BaseWorker):
        """
        Регистрация воркера.

        Raises:
            ConfigurationError: категория не из перечисления или уже занята
        """
        if not isinstance(worker.category, TaskCategory):
            raise ConfigurationError(f"Worker {worker.id} has unknown category {worker.category!r}")

        with self._lock:
            if worker.category in self._categories:
                raise ConfigurationError(
                    f"Category '{worker.category.value}' already served by "
                    f"{self._categories[worker.category]}"
                )
            if worker.id in self._workers:
                raise ConfigurationError(f"Worker id '{worker.id}' already registered")

            self._workers[worker.id] = worker
            self._categories[worker.category] = worker.id
            self._routes[worker.category] = worker.id
            self._connections[worker.id] = WorkerConnection(worker=worker)

        logger.info(f"Registered worker {worker.id} ({worker.name}) for '{worker.category.value}'")

    # Маршрутизация

    def resolve(self, category: TaskCategory) -> BaseWorker:
        """Воркер для категории с учетом активных failover-маршрутов."""
        with self._lock:
            worker_id = self._routes.get(category)
            if worker_id is None:
                raise NoSuitableWorkerError(f"No worker registered for category '{category.value}'")
            return self._workers[worker_id]

    def reroute(self, failed_worker_id: str, backup_worker_id: str) -> List[TaskCategory]:
        """Перенаправить все маршруты failed -> backup до явного отката."""
        with self._lock:
            self._require(failed_worker_id)
            backup = self._require(backup_worker_id)

            rerouted = [c for c, w in self._routes.items() if w == failed_worker_id]
            for category in rerouted:
                self._routes[category] = backup_worker_id
                if category != backup.category:
                    backup.accept_category(category)
            self._failovers[failed_worker_id] = backup_worker_id

        logger.info(
            f"Routing updated: {[c.value for c in rerouted]} now served by "
            f"{backup_worker_id} instead of {failed_worker_id}"
        )
        return rerouted

    def revert_route(self, failed_worker_id: str) -> List[TaskCategory]:
        """Вернуть маршруты воркера после failover."""
        with self._lock:
            self._require(failed_worker_id)
            backup = self._workers.get(self._failovers.pop(failed_worker_id, None))

            restored = [c for c, w in self._categories.items() if w == failed_worker_id]
            for category in restored:
                self._routes[category] = failed_worker_id
                if backup is not None:
                    backup.release_category(category)

        logger.info(f"Routing reverted for {failed_worker_id}: {[c.value for c in restored]}")
        return restored

    def get_failovers(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._failovers)

    def get_routes(self) -> Dict[TaskCategory, str]:
        with self._lock:
            return dict(self._routes)

    # Доступ к воркерам

    def get_worker(self, worker_id: str) -> BaseWorker:
        with self._lock:
            return self._require(worker_id)

    def find_worker(self, worker_id: str) -> Optional[BaseWorker]:
        with self._lock:
            return self._workers.get(worker_id)

    def get_workers(self) -> List[BaseWorker]:
        """Воркеры в порядке регистрации."""
        with self._lock:
            return list(self._workers.values())

    def get_worker_ids(self) -> List[str]:
        with self._lock:
            return list(self._workers)

    def __contains__(self, worker_id: str) -> bool:
        with self._lock:
            return worker_id in self._workers

    def __len__(self) -> int:
        with self._lock:
            return len(self._workers)

    # Таблица подключений

    def get_connection(self, worker_id: str) -> WorkerConnection:
        with self._lock:
            self._require(worker_id)
            return self._connections[worker_id]

    def get_connections(self) -> List[WorkerConnection]:
        with self._lock:
            return list(self._connections.values())

    def mark_connected(self, worker_id: str, status: WorkerStatus, response_time_ms: float):
        """Успешный опрос: heartbeat, снимок статуса и скользящее обновление показателей."""
        with self._lock:
            connection = self._connections[worker_id]
            connection.state = ConnectionState.CONNECTED
            connection.last_heartbeat = datetime.now()
            connection.last_status = status

            samples, connection.pending_samples = connection.pending_samples, []
            if not samples:
                # Без выполненных задач учитываем только задержку опроса
                connection.performance.apply_sample(response_time_ms)
            for sample in samples:
                connection.performance.apply_sample(sample.response_time_ms, sample.success)

    def mark_disconnected(self, worker_id: str, reason: str = ""):
        with self._lock:
            connection = self._connections[worker_id]
            was_connected = connection.is_connected()
            connection.state = ConnectionState.DISCONNECTED

        if was_connected:
            logger.warning(f"Worker {worker_id} marked disconnected{': ' + reason if reason else ''}")

    def mark_stale(self, heartbeat_timeout: float) -> List[str]:
        """Отметить отключенными записи с устаревшим heartbeat."""
        cutoff = datetime.now() - timedelta(seconds=heartbeat_timeout)
        stale = []

        with self._lock:
            for worker_id, connection in self._connections.items():
                if connection.is_connected() and connection.last_heartbeat < cutoff:
                    connection.state = ConnectionState.DISCONNECTED
                    stale.append(worker_id)

        for worker_id in stale:
            logger.warning(f"Worker {worker_id} heartbeat is older than {heartbeat_timeout}s")
        return stale

    def record_execution(self, worker_id: str, response_time_ms: float, success: bool):
        """Замер выполнения; учитывается в показателях при ближайшем опросе."""
        with self._lock:
            connection = self._connections.get(worker_id)
            if connection is None:
                return
            connection.pending_samples.append(ExecutionSample(response_time_ms, success))

    def assign_workload(self, worker_id: str, workload: Any):
        with self._lock:
            self._require(worker_id)
            self._connections[worker_id].assigned_workloads.append(workload)

    def transfer_workloads(self, from_worker_id: str, to_worker_id: str) -> int:
        """Перенос учетных записей нагрузки между воркерами."""
        with self._lock:
            source = self.get_connection(from_worker_id)
            target = self.get_connection(to_worker_id)
            moved = len(source.assigned_workloads)
            target.assigned_workloads.extend(source.assigned_workloads)
            source.assigned_workloads = []

        logger.info(f"Transferred {moved} workloads from {from_worker_id} to {to_worker_id}")
        return moved

    # Жизненный цикл

    def start_all(self) -> List[str]:
        """
        Запуск всех воркеров.

        Returns:
            ID воркеров, которые не удалось запустить
        """
        failed = []
        for worker in self.get_workers():
            try:
                worker.start()
            except WorkerError as e:
                logger.error(f"Failed to start worker {worker.id}: {e}")
                failed.append(worker.id)
        return failed

    def stop_all(self) -> List[str]:
        """
        Остановка всех воркеров.

        Returns:
            ID воркеров, которые не удалось остановить
        """
        failed = []
        for worker in self.get_workers():
            try:
                worker.stop()
            except WorkerError as e:
                logger.error(f"Failed to stop worker {worker.id}: {e}")
                failed.append(worker.id)
        return failed

    def get_registry_stats(self) -> Dict[str, Any]:
        """Получение статистики реестра."""
        with self._lock:
            total = len(self._connections)
            connected = sum(1 for c in self._connections.values() if c.is_connected())
            return {
                'total_workers': total,
                'connected_workers': connected,
                'disconnected_workers': total - connected,
                'active_failovers': dict(self._failovers)
            }

    def _require(self, worker_id: str) -> BaseWorker:
        worker = self._workers.get(worker_id)
        if worker is None:
            raise UnknownWorkerError(f"Worker {worker_id} not found")
        return worker

    def __repr__(self) -> str:
        stats = self.get_registry_stats()
        return f"WorkerRegistry(workers={stats['total_workers']}, connected={stats['connected_workers']})"
