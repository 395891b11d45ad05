"""
Интеграционный воркер: операции WorkflowEngine как задачи категории integration.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from ..core.worker import BaseWorker
from ..core.workflow import WorkflowEngine
from ..models.task import Task, TaskCategory, TaskPayload, TaskPriority
from ..exceptions import WorkerUnavailableError


class IntegrationAction(Enum):
    COORDINATE_AGENTS = "coordinate_agents"
    EXECUTE_WORKFLOW = "execute_workflow"
    GET_SYSTEM_METRICS = "get_system_metrics"
    LOAD_BALANCE = "load_balance"
    FAILOVER = "failover"
    REVERT_FAILOVER = "revert_failover"
    SYNC_AGENTS = "sync_agents"
    VALIDATE_SYSTEM = "validate_system"
    GET_PERFORMANCE_REPORT = "get_performance_report"
    BACKUP_SYSTEM = "backup_system"
    RESTORE_SYSTEM = "restore_system"
    HANDLE_SYSTEM_ALERT = "handle_system_alert"


class IntegrationWorker(BaseWorker):
    """
    Воркер, делегирующий операции движку workflow.

    Движок создается после реестра, поэтому подключается отдельно через
    attach_engine().
    """

    category = TaskCategory.INTEGRATION
    actions = IntegrationAction
    default_name = "Integration Worker"

    def __init__(self, *args, engine: Optional[WorkflowEngine] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._engine = engine
        self._paused_workflows: List[str] = []

    def attach_engine(self, engine: WorkflowEngine):
        self._engine = engine

    def _on_stop(self):
        if self._engine is not None:
            self._paused_workflows.extend(self._engine.stop_all())

    def _on_start(self):
        # Остановленные вручную workflow остаются остановленными
        paused, self._paused_workflows = self._paused_workflows, []
        if self._engine is not None:
            for workflow_id in paused:
                self._engine.activate_workflow(workflow_id)

    def _build_handlers(self):
        return {
            IntegrationAction.COORDINATE_AGENTS: self._coordinate_agents,
            IntegrationAction.EXECUTE_WORKFLOW: self._execute_workflow,
            IntegrationAction.GET_SYSTEM_METRICS: self._get_system_metrics,
            IntegrationAction.LOAD_BALANCE: self._load_balance,
            IntegrationAction.FAILOVER: self._failover,
            IntegrationAction.REVERT_FAILOVER: self._revert_failover,
            IntegrationAction.SYNC_AGENTS: self._sync_agents,
            IntegrationAction.VALIDATE_SYSTEM: self._validate_system,
            IntegrationAction.GET_PERFORMANCE_REPORT: self._get_performance_report,
            IntegrationAction.BACKUP_SYSTEM: self._backup_system,
            IntegrationAction.RESTORE_SYSTEM: self._restore_system,
            IntegrationAction.HANDLE_SYSTEM_ALERT: self._handle_system_alert
        }

    @property
    def engine(self) -> WorkflowEngine:
        if self._engine is None:
            raise WorkerUnavailableError(f"Worker {self.id} has no workflow engine attached")
        return self._engine

    def _coordinate_agents(self, task: Task) -> Dict[str, Any]:
        params = task.params
        inner = Task(
            category=TaskCategory(params.get('category', TaskCategory.INTEGRATION.value)),
            payload=TaskPayload(action=params['inner_action'], params=params.get('params', {})),
            priority=TaskPriority[params.get('priority', 'MEDIUM').upper()]
        )
        result = self.engine.coordinate_agents(params['agents'], inner)
        return {
            'success': result.success,
            'results': result.results,
            'errors': result.errors,
            'execution_time_ms': result.execution_time_ms
        }

    def _execute_workflow(self, task: Task) -> Dict[str, Any]:
        result = self.engine.execute_workflow(task.params['workflow_id'], task.params.get('data'))
        return {
            'workflow_id': result.workflow_id,
            'status': result.status.value,
            'results': result.compiled,
            'execution_time_ms': result.execution_time_ms
        }

    def _get_system_metrics(self, task: Task) -> Dict[str, Any]:
        return {
            'workflows': self.engine.get_workflow_metrics(),
            'last_coordination': self.engine.get_last_coordination(),
            'loads': self.engine.analyze_loads()
        }

    def _load_balance(self, task: Task) -> Dict[str, Any]:
        result = self.engine.load_balance(task.params.get('workload'))
        return {
            'success': result.success,
            'target_worker': result.target_worker_id,
            'loads': result.loads
        }

    def _failover(self, task: Task) -> Dict[str, Any]:
        result = self.engine.failover(task.params['failed_agent'])
        return {
            'success': result.success,
            'failed_agent': result.failed_worker_id,
            'backup_agent': result.backup_worker_id,
            'recovery_time_ms': result.recovery_time_ms,
            'rerouted': [c.value for c in result.rerouted_categories]
        }

    def _revert_failover(self, task: Task) -> Dict[str, Any]:
        restored = self.engine.revert_failover(task.params['failed_agent'])
        return {'restored': [c.value for c in restored]}

    def _sync_agents(self, task: Task) -> Dict[str, Any]:
        return self.engine.sync_agents(task.params['agents'])

    def _validate_system(self, task: Task) -> Dict[str, Any]:
        return self.engine.validate_system()

    def _get_performance_report(self, task: Task) -> Dict[str, Any]:
        return self.engine.get_performance_report(task.params.get('time_range', '1h'))

    def _backup_system(self, task: Task) -> Dict[str, Any]:
        return self.engine.backup_system(task.params.get('label', 'system'))

    def _restore_system(self, task: Task) -> Dict[str, Any]:
        return self.engine.restore_system(task.params['backup_id'])

    def _handle_system_alert(self, task: Task) -> Dict[str, Any]:
        return self.engine.handle_system_alert(task.params.get('alert', task.params))
