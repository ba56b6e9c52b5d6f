from datetime import datetime, timezone

from workflow_api.models import TaskCompletionData, TaskData, TaskResult, TaskStatus
from workflow_api.variables import to_java_friendly


class UnknownTaskError(LookupError):
    pass


class TaskService:
    """
    Business logic for work items handed out by the engine.

    Shared by the HTTP controller and the external task worker so both paths
    produce the same result. Status is kept in memory per process.
    """

    def __init__(self):
        self._statuses = {}

    def _set_status(self, task_id: str, status: str) -> TaskStatus:
        self._statuses[task_id] = TaskStatus(id=task_id, status=status, lastUpdated=datetime.now(timezone.utc))
        return self._statuses[task_id]

    def process_task(self, task: TaskData) -> TaskResult:
        print(f"[tasks] Processing task {task.id} ({task.name})")
        status = self._set_status(task.id, "Processed")
        return TaskResult(
            taskId=task.id,
            status=status.status,
            processedAt=status.lastUpdated,
            result={
                "name": task.name,
                "parameterCount": len(task.parameters),
                "parameters": to_java_friendly(task.parameters),
            },
        )

    def get_task_status(self, task_id: str) -> TaskStatus:
        if task_id not in self._statuses:
            raise UnknownTaskError(task_id)
        return self._statuses[task_id]

    def complete_task(self, task_id: str, completion: TaskCompletionData) -> TaskStatus:
        status = "Completed" if completion.success else "Failed"
        if not completion.success:
            print(f"[tasks] Task {task_id} failed: {completion.errorMessage}")
        return self._set_status(task_id, status)
