"""
Движок workflow, балансировки нагрузки и failover.
"""

import copy
import dataclasses
import threading
import time
import uuid
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .health import HealthAggregator
from .registry import WorkerRegistry
from ..models.emergency import EmergencySeverity
from ..models.task import Task, TaskCategory, TaskPayload, TaskPriority, TaskStatus
from ..models.workflow import (
    AgentCoordinationResult,
    FailoverResult,
    LoadBalanceResult,
    StepResult,
    StepStatus,
    Workflow,
    WorkflowResult,
    WorkflowStatus,
    WorkflowStep
)
from ..utils.logger import get_logger
from ..exceptions import (
    ConfigurationError,
    NoSuitableWorkerError,
    TaskStateError,
    UnknownWorkflowError
)


logger = get_logger(__name__)


DEFAULT_WORKFLOWS: List[Dict[str, Any]] = [
    {
        'id': 'contact_management',
        'name': 'Contact Management Workflow',
        'steps': [
            {'id': 'create_contact', 'category': 'contact', 'action': 'create_contact'},
            {'id': 'suggest_groups', 'category': 'ai', 'action': 'suggest_groups'},
            {'id': 'update_contact', 'category': 'contact', 'action': 'update_contact'},
        ],
    },
    {
        'id': 'call_processing',
        'name': 'Call Processing Workflow',
        'steps': [
            {'id': 'detect_spam', 'category': 'security', 'action': 'scan_for_threats'},
            {'id': 'process_call', 'category': 'call', 'action': 'make_call'},
            {'id': 'log_call', 'category': 'contact', 'action': 'update_contact'},
        ],
    },
    {
        'id': 'message_handling',
        'name': 'Message Handling Workflow',
        'steps': [
            {'id': 'analyze_message', 'category': 'ai', 'action': 'analyze_sentiment'},
            {'id': 'categorize_message', 'category': 'message', 'action': 'auto_categorize'},
            {'id': 'store_message', 'category': 'message', 'action': 'send_chat_message'},
        ],
    },
]

TIME_RANGES = {
    '1h': timedelta(hours=1),
    '24h': timedelta(hours=24),
    '7d': timedelta(days=7),
    '30d': timedelta(days=30),
}


@dataclass
class WorkflowConfig:
    """Конфигурация движка workflow."""
    backup_candidates: List[str] = field(default_factory=lambda: ["ai", "security", "backup"])
    workflows: List[Dict[str, Any]] = field(default_factory=lambda: copy.deepcopy(DEFAULT_WORKFLOWS))
    min_success_rate: float = 0.9  # Порог предупреждения в validate_system


def build_workflow(definition: Dict[str, Any]) -> Workflow:
    """Создание Workflow из словаря (формат конфигурации)."""
    try:
        steps = [
            WorkflowStep(
                step_id=step['id'],
                category=TaskCategory(step['category']),
                action=step['action']
            )
            for step in definition.get('steps', [])
        ]
        return Workflow(
            id=definition['id'],
            name=definition.get('name', definition['id']),
            steps=steps,
            status=WorkflowStatus(definition.get('status', WorkflowStatus.ACTIVE.value))
        )
    except (KeyError, ValueError) as e:
        raise ConfigurationError(f"Invalid workflow definition {definition!r}: {e}") from e


class WorkflowEngine:
    """Многошаговые workflow и межворкерные операции поверх реестра."""

    def __init__(
        self,
        registry: WorkerRegistry,
        aggregator: Optional[HealthAggregator] = None,
        config: Optional[WorkflowConfig] = None
    ):
        self.config = config or WorkflowConfig()
        self._registry = registry
        self._aggregator = aggregator
        self._lock = threading.Lock()
        self._workflows: Dict[str, Workflow] = {}
        self._last_coordination: Optional[Dict[str, Any]] = None
        self._system_alerts: List[Dict[str, Any]] = []

        for definition in self.config.workflows:
            self.register_workflow(build_workflow(definition))

        logger.info(f"WorkflowEngine initialized with {len(self._workflows)} workflows")

    # Реестр workflow

    def register_workflow(self, workflow: Workflow):
        with self._lock:
            self._workflows[workflow.id] = workflow
        logger.debug(f"Workflow {workflow.id} registered with {len(workflow.steps)} steps")

    def get_workflow(self, workflow_id: str) -> Workflow:
        with self._lock:
            workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise UnknownWorkflowError(f"Workflow {workflow_id} not found")
        return workflow

    def get_workflows(self) -> List[Workflow]:
        with self._lock:
            return list(self._workflows.values())

    def stop_workflow(self, workflow_id: str):
        workflow = self.get_workflow(workflow_id)
        with self._lock:
            workflow.status = WorkflowStatus.STOPPED
        logger.info(f"Workflow {workflow_id} stopped")

    def activate_workflow(self, workflow_id: str):
        workflow = self.get_workflow(workflow_id)
        with self._lock:
            workflow.status = WorkflowStatus.ACTIVE
        logger.info(f"Workflow {workflow_id} activated")

    def stop_all(self) -> List[str]:
        """Остановка всех workflow. Возвращает id тех, что были активны."""
        stopped = [w.id for w in self.get_workflows() if w.status == WorkflowStatus.ACTIVE]
        for workflow_id in stopped:
            self.stop_workflow(workflow_id)
        return stopped

    # Выполнение

    def execute_workflow(self, workflow_id: str, data: Optional[Dict[str, Any]] = None) -> WorkflowResult:
        """
        Последовательное выполнение всех шагов workflow.

        Сбой шага фиксируется, но не прерывает оставшиеся шаги. Workflow
        считается completed, только если каждый шаг completed.

        Raises:
            UnknownWorkflowError: workflow не найден
            TaskStateError: workflow остановлен
        """
        workflow = self.get_workflow(workflow_id)
        if workflow.status != WorkflowStatus.ACTIVE:
            raise TaskStateError(f"Workflow {workflow_id} is {workflow.status.value}")

        logger.info(f"Executing workflow {workflow_id} ({len(workflow.steps)} steps)")
        start_time = time.time()
        data = data or {}

        steps = [self._execute_step(step, data) for step in workflow.steps]

        all_completed = all(step.status == StepStatus.COMPLETED for step in steps)
        status = StepStatus.COMPLETED if all_completed else StepStatus.FAILED

        with self._lock:
            workflow.execution_count += 1
            workflow.last_executed = datetime.now()
            workflow.last_result_status = status.value

        result = WorkflowResult(
            workflow_id=workflow_id,
            status=status,
            steps=steps,
            compiled=self._compile_result(steps),
            execution_time_ms=(time.time() - start_time) * 1000
        )

        log = logger.info if all_completed else logger.warning
        log(f"Workflow {workflow_id} {status.value}: "
            f"{result.compiled['completed_steps']}/{len(steps)} steps completed")
        return result

    def _execute_step(self, step: WorkflowStep, data: Dict[str, Any]) -> StepResult:
        try:
            worker = self._registry.resolve(step.category)
        except NoSuitableWorkerError as e:
            return StepResult(step_id=step.step_id, status=StepStatus.FAILED, error=str(e))

        task = Task(
            category=step.category,
            payload=TaskPayload(action=step.action, params=dict(data)),
            priority=TaskPriority.MEDIUM,
            description=f"Workflow step: {step.step_id}"
        )

        try:
            result = worker.execute_task(task)
        except Exception as e:
            logger.warning(f"Workflow step {step.step_id} failed on {worker.id}: {e}")
            return StepResult(
                step_id=step.step_id,
                status=StepStatus.FAILED,
                worker_id=worker.id,
                error=str(e)
            )

        return StepResult(
            step_id=step.step_id,
            status=StepStatus.COMPLETED,
            worker_id=worker.id,
            result=result
        )

    @staticmethod
    def _compile_result(steps: List[StepResult]) -> Dict[str, Any]:
        completed = [s for s in steps if s.status == StepStatus.COMPLETED]
        failed = [s for s in steps if s.status == StepStatus.FAILED]
        return {
            'total_steps': len(steps),
            'completed_steps': len(completed),
            'failed_steps': len(failed),
            'results': {s.step_id: s.result for s in completed},
            'errors': {s.step_id: s.error for s in failed}
        }

    # Балансировка нагрузки

    def analyze_loads(self) -> Dict[str, float]:
        """Текущая нагрузка подключенных воркеров: активные задачи + память + CPU."""
        loads: Dict[str, float] = {}
        for connection in self._registry.get_connections():
            if not connection.is_connected():
                continue
            status = connection.worker.get_status()
            loads[connection.worker_id] = status.active_tasks + status.memory_usage + status.cpu_usage
        return loads

    def load_balance(self, workload: Any) -> LoadBalanceResult:
        """Жадное назначение всей нагрузки одному наименее загруженному воркеру."""
        loads = self.analyze_loads()

        target: Optional[str] = None
        min_load = float('inf')
        for worker_id, load in loads.items():
            # Строгое сравнение: при равенстве остается первый по порядку
            if load < min_load:
                min_load = load
                target = worker_id

        if target is None:
            logger.warning("Load balancing found no connected workers")
            return LoadBalanceResult(success=False, target_worker_id=None, distribution={}, loads=loads)

        self._registry.assign_workload(target, workload)
        logger.info(f"Workload assigned to {target} (load {min_load:.1f})")

        return LoadBalanceResult(
            success=True,
            target_worker_id=target,
            distribution={target: workload},
            loads=loads
        )

    # Failover

    def failover(self, failed_worker_id: str) -> FailoverResult:
        """
        Переключение с отказавшего воркера на резервный.

        Резерв выбирается первым совпадением из backup_candidates, без оценки
        нагрузки. Маршруты остаются на резерве до revert_failover().

        Raises:
            UnknownWorkerError: отказавший воркер не зарегистрирован
            NoSuitableWorkerError: нет доступного резервного воркера
        """
        start_time = time.time()
        logger.info(f"Initiating failover for worker {failed_worker_id}")

        self._registry.get_worker(failed_worker_id)

        backup_id = next(
            (c for c in self.config.backup_candidates
             if c != failed_worker_id and c in self._registry),
            None
        )
        if backup_id is None:
            raise NoSuitableWorkerError(f"No backup worker available for {failed_worker_id}")

        transferred = self._registry.transfer_workloads(failed_worker_id, backup_id)
        self._registry.mark_disconnected(failed_worker_id, "failover")
        rerouted = self._registry.reroute(failed_worker_id, backup_id)

        recovery_time_ms = (time.time() - start_time) * 1000
        logger.info(f"Failover {failed_worker_id} -> {backup_id} completed in {recovery_time_ms:.1f}ms")

        return FailoverResult(
            success=True,
            failed_worker_id=failed_worker_id,
            backup_worker_id=backup_id,
            recovery_time_ms=recovery_time_ms,
            rerouted_categories=rerouted,
            transferred_workloads=transferred
        )

    def revert_failover(self, failed_worker_id: str) -> List[TaskCategory]:
        """Явный откат маршрутов после восстановления воркера."""
        return self._registry.revert_route(failed_worker_id)

    # Координация нескольких воркеров

    def coordinate_agents(self, worker_ids: List[str], task: Task) -> AgentCoordinationResult:
        """
        Выполнение одной задачи на каждом воркере независимо.

        Задача копируется под категорию каждого воркера. Успех только при
        отсутствии ошибок.
        """
        logger.info(f"Coordinating {len(worker_ids)} workers for action '{task.action}'")
        start_time = time.time()
        results: List[Dict[str, Any]] = []
        errors: List[str] = []

        for worker_id in worker_ids:
            worker = self._registry.find_worker(worker_id)
            if worker is None:
                errors.append(f"Worker {worker_id} not found")
                results.append({'worker_id': worker_id, 'success': False, 'result': None,
                                'error': 'not found'})
                continue

            worker_task = dataclasses.replace(
                task,
                id=f"{task.id}:{worker_id}",
                category=worker.category,
                status=TaskStatus.PENDING,
                assigned_worker=None
            )
            try:
                result = worker.execute_task(worker_task)
            except Exception as e:
                errors.append(f"Worker {worker_id} failed: {e}")
                results.append({'worker_id': worker_id, 'success': False, 'result': None,
                                'error': str(e)})
                continue

            results.append({'worker_id': worker_id, 'success': True, 'result': result})

        execution_time_ms = (time.time() - start_time) * 1000

        with self._lock:
            self._last_coordination = {
                'workers': list(worker_ids),
                'action': task.action,
                'execution_time_ms': execution_time_ms,
                'success_count': sum(1 for r in results if r['success']),
                'error_count': len(errors),
                'timestamp': datetime.now()
            }

        return AgentCoordinationResult(
            success=not errors,
            results=results,
            errors=errors,
            execution_time_ms=execution_time_ms
        )

    def sync_agents(self, worker_ids: List[str]) -> Dict[str, Any]:
        """Синхронизация воркеров через общее действие sync."""
        sync_task = Task(
            category=TaskCategory.INTEGRATION,
            payload=TaskPayload(action="sync"),
            description="Synchronize workers"
        )
        outcome = self.coordinate_agents(worker_ids, sync_task)
        return {
            'success': outcome.success,
            'synced_agents': [r['worker_id'] for r in outcome.results if r['success']],
            'failed_agents': [r['worker_id'] for r in outcome.results if not r['success']]
        }

    # Резервное копирование

    def backup_system(self, label: str = "system") -> Dict[str, Any]:
        """
        Снимок системы через воркер категории backup.

        В снимок входят определения и статусы workflow и настройки воркеров.

        Raises:
            NoSuitableWorkerError: воркер резервного копирования недоступен
        """
        snapshot = {
            'workflows': [self._workflow_definition(w) for w in self.get_workflows()],
            'settings': {w.id: w.get_settings() for w in self._registry.get_workers()}
        }
        created = self._run_backup_action("create_backup", {'label': label, 'data': snapshot})

        logger.info(f"System backup {created['backup_id']} created ({len(snapshot['workflows'])} workflows)")
        return {
            'success': True,
            'backup_id': created['backup_id'],
            'workflows': len(snapshot['workflows']),
            'workers': len(snapshot['settings']),
            'timestamp': datetime.now()
        }

    def restore_system(self, backup_id: str) -> Dict[str, Any]:
        """
        Восстановление workflow и настроек воркеров из снимка.

        Статус существующего workflow берется из снимка, отсутствующие
        регистрируются заново. Настройки применяются общим действием
        apply_config; сбой одного воркера не прерывает остальных.
        """
        data = self._run_backup_action("restore_backup", {'backup_id': backup_id})['data']

        restored_workflows = []
        for definition in data.get('workflows', []):
            with self._lock:
                workflow = self._workflows.get(definition['id'])
                if workflow is not None:
                    workflow.status = WorkflowStatus(definition['status'])
            if workflow is None:
                self.register_workflow(build_workflow(definition))
            restored_workflows.append(definition['id'])

        restored_workers: List[str] = []
        errors: List[str] = []
        for worker_id, settings in data.get('settings', {}).items():
            worker = self._registry.find_worker(worker_id)
            if worker is None:
                errors.append(f"Worker {worker_id} not found")
                continue
            if not settings:
                continue
            task = Task(
                category=worker.category,
                payload=TaskPayload(action="apply_config", params=dict(settings)),
                description="Restore worker settings"
            )
            try:
                worker.execute_task(task)
            except Exception as e:
                errors.append(f"Worker {worker_id} failed: {e}")
                continue
            restored_workers.append(worker_id)

        log = logger.info if not errors else logger.warning
        log(f"System restored from backup {backup_id}: {len(restored_workflows)} workflows, "
            f"{len(restored_workers)} workers, {len(errors)} errors")
        return {
            'success': not errors,
            'backup_id': backup_id,
            'restored_workflows': restored_workflows,
            'restored_workers': restored_workers,
            'errors': errors
        }

    def _run_backup_action(self, action: str, params: Dict[str, Any]) -> Dict[str, Any]:
        worker = self._registry.resolve(TaskCategory.BACKUP)
        task = Task(
            category=TaskCategory.BACKUP,
            payload=TaskPayload(action=action, params=params),
            priority=TaskPriority.HIGH,
            description=f"System {action}"
        )
        return worker.execute_task(task)

    @staticmethod
    def _workflow_definition(workflow: Workflow) -> Dict[str, Any]:
        return {
            'id': workflow.id,
            'name': workflow.name,
            'status': workflow.status.value,
            'steps': [
                {'id': s.step_id, 'category': s.category.value, 'action': s.action}
                for s in workflow.steps
            ]
        }

    # Системные алерты

    def handle_system_alert(self, alert: Dict[str, Any]) -> Dict[str, Any]:
        """
        Реакция на внешний системный алерт.

        Набор действий определяется серьезностью:
        critical останавливает затронутый воркер и переключает его на резерв,
        high перезапускает его и учащает мониторинг, medium и low только
        фиксируются. Алерт сохраняется вместе с итогом обработки.

        Raises:
            ConfigurationError: неизвестная серьезность
        """
        try:
            severity = EmergencySeverity[str(alert.get('severity', 'low')).upper()]
        except KeyError as e:
            raise ConfigurationError(f"Unknown alert severity {alert.get('severity')!r}") from e

        worker_id = alert.get('worker_id')
        message = alert.get('message', '')
        actions: List[str] = []
        errors: List[str] = []

        def perform(action: str, operation):
            try:
                operation()
            except Exception as e:
                errors.append(f"{action}: {e}")
                return
            actions.append(action)

        if severity == EmergencySeverity.CRITICAL:
            if worker_id:
                perform("stop_affected_agents", lambda: self._registry.get_worker(worker_id).stop())
                perform("initiate_failover", lambda: self.failover(worker_id))
            logger.critical(f"System alert requires attention: {message}")
            actions.append("notify_administrators")
        elif severity == EmergencySeverity.HIGH:
            if worker_id:
                perform("restart_affected_agents", lambda: self._restart(worker_id))
            if self._aggregator is not None:
                perform("increase_monitoring", self._aggregator.boost_monitoring)
        else:
            logger.warning(f"System alert ({severity.name}): {message}")
            actions.append("log_alert")
            if severity == EmergencySeverity.MEDIUM:
                actions.append("schedule_maintenance")

        record = {
            'id': alert.get('id') or str(uuid.uuid4()),
            'severity': severity.name.lower(),
            'worker_id': worker_id,
            'message': message,
            'actions': actions,
            'errors': errors,
            'handled': not errors,
            'timestamp': datetime.now()
        }
        with self._lock:
            self._system_alerts.append(record)

        return {
            'handled': not errors,
            'actions': actions,
            'errors': errors,
            'resolution': "Alert handled successfully" if not errors else "Alert handled with errors"
        }

    def _restart(self, worker_id: str):
        worker = self._registry.get_worker(worker_id)
        worker.stop()
        worker.start()

    def get_system_alerts(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(record) for record in self._system_alerts]

    # Диагностика

    def validate_system(self) -> Dict[str, Any]:
        """Проверка подключений, workflow и ресурсов."""
        issues: List[str] = []
        warnings: List[str] = []
        recommendations: List[str] = []

        for connection in self._registry.get_connections():
            if not connection.is_connected():
                issues.append(f"Worker {connection.worker_id} is not connected")
            if connection.performance.success_rate < self.config.min_success_rate:
                warnings.append(
                    f"Worker {connection.worker_id} has low success rate: "
                    f"{connection.performance.success_rate:.2f}"
                )

        for workflow in self.get_workflows():
            if workflow.status != WorkflowStatus.ACTIVE:
                warnings.append(f"Workflow {workflow.id} is not active")
            if not workflow.steps:
                issues.append(f"Workflow {workflow.id} has no steps defined")

        if self._aggregator is not None:
            metrics = self._aggregator.get_system_status().metrics
            for label, value in (('CPU', metrics.used_cpu), ('Memory', metrics.used_memory)):
                if value > 90:
                    issues.append(f"{label} usage is critically high")
                elif value > 80:
                    warnings.append(f"{label} usage is high")

        if issues:
            recommendations.append("Fix critical system issues immediately")
        if warnings:
            recommendations.append("Monitor system warnings closely")
        if not issues and not warnings:
            recommendations.append("System is healthy, continue regular monitoring")

        return {
            'valid': not issues,
            'issues': issues,
            'warnings': warnings,
            'recommendations': recommendations
        }

    def get_performance_report(self, time_range: str = "1h") -> Dict[str, Any]:
        """Сводка по истории циклов опроса за период ('1h', '24h', '7d', '30d' или все)."""
        if self._aggregator is None:
            history = []
        else:
            history = self._aggregator.get_performance_history(TIME_RANGES.get(time_range))

        if not history:
            return {
                'summary': {'average_response_time_ms': 0.0, 'cycles': 0, 'error_rate': 0.0},
                'details': [],
                'recommendations': ["Collect more performance data"],
                'trends': []
            }

        response_times = [c.average_response_time_ms for c in history]
        error_rates = [c.error_rate for c in history]
        avg_response = sum(response_times) / len(history)
        avg_error_rate = sum(error_rates) / len(history)

        recommendations = []
        if avg_response > 1000:
            recommendations.append("Optimize worker response times")
        if avg_error_rate > 0.1:
            recommendations.append("Improve error handling")
        if not recommendations:
            recommendations.append("Performance is within acceptable range")

        trends = []
        recent, older = response_times[-5:], response_times[-10:-5]
        if recent and older:
            recent_avg = sum(recent) / len(recent)
            older_avg = sum(older) / len(older)
            if recent_avg < older_avg:
                trends.append({'type': 'improvement', 'metric': 'response_time',
                               'change': older_avg - recent_avg})
            elif recent_avg > older_avg:
                trends.append({'type': 'degradation', 'metric': 'response_time',
                               'change': recent_avg - older_avg})

        return {
            'summary': {
                'average_response_time_ms': avg_response,
                'cycles': len(history),
                'error_rate': avg_error_rate
            },
            'details': [
                {
                    'timestamp': c.timestamp.isoformat(),
                    'tier': c.tier.value,
                    'response_time_ms': c.average_response_time_ms,
                    'error_rate': c.error_rate
                }
                for c in history
            ],
            'recommendations': recommendations,
            'trends': trends
        }

    def get_workflow_metrics(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {
                workflow.id: {
                    'status': workflow.status.value,
                    'execution_count': workflow.execution_count,
                    'last_executed': workflow.last_executed,
                    'last_result': workflow.last_result_status
                }
                for workflow in self._workflows.values()
            }

    def get_last_coordination(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return dict(self._last_coordination) if self._last_coordination else None
