import os
import sys
import uuid

import requests
from camunda.external_task.external_task import ExternalTask, TaskResult
from camunda.external_task.external_task_worker import ExternalTaskWorker
from pydantic import ValidationError

from workflow_api.models import TaskData
from workflow_api.task_service import TaskService
from workflow_api.variables import to_engine_value, to_java_friendly

# Configuration from environment
ENGINE_REST = os.getenv("ENGINE_REST", "http://camunda:8080/engine-rest")
TOPIC_NAME = os.getenv("TOPIC_NAME", "process-task")
WORKER_ID = os.getenv("WORKER_ID", f"task-worker-{uuid.uuid4()}")
# empty: process in this worker instead of calling the web API
WEB_API_BASE_URL = os.getenv("WEB_API_BASE_URL", "")
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "3"))
RETRY_TIMEOUT_MS = int(os.getenv("RETRY_TIMEOUT_MS", "10000"))

WORKER_CONFIG = {
    "maxTasks": int(os.getenv("MAX_TASKS", "1")),
    "lockDuration": int(os.getenv("LOCK_DURATION_MS", "60000")),
    "asyncResponseTimeout": 5000,
    "retries": MAX_RETRIES,
    "retryTimeout": RETRY_TIMEOUT_MS,
    "sleepSeconds": 5,
}

task_service = TaskService()


def task_data_from(task: ExternalTask) -> TaskData:
    variables = dict(task.get_variables() or {})
    return TaskData(
        id=task.get_task_id(),
        name=variables.pop("taskName", None) or task.get_topic_name(),
        description=variables.pop("description", None),
        parameters=variables,
    )


def process_via_http(data: TaskData, base_url: str = None) -> dict:
    url = f"{(base_url or WEB_API_BASE_URL).rstrip('/')}/api/tasks/process"
    r = requests.post(url, json=data.model_dump(mode="json"), timeout=30)
    r.raise_for_status()
    return r.json()


def process_in_process(data: TaskData, service: TaskService = None) -> dict:
    result = (service or task_service).process_task(data)
    return result.model_dump(mode="json")


def handle(task: ExternalTask) -> TaskResult:
    print(f"[task-worker] Processing task {task.get_task_id()} "
          f"for process instance {task.get_process_instance_id()}")
    try:
        data = task_data_from(task)
        if WEB_API_BASE_URL:
            result = process_via_http(data)
        else:
            result = process_in_process(data)

        return task.complete({
            "taskStatus": result.get("status"),
            "processedAt": result.get("processedAt"),
            # maps go out as Json typed values
            "taskResult": to_engine_value(to_java_friendly(result.get("result") or {})),
        })
    except (requests.RequestException, ValidationError, ValueError) as e:
        print(f"[task-worker] Error processing task {task.get_task_id()}: {e}", file=sys.stderr)
        return task.failure(
            error_message=str(e),
            error_details=repr(e),
            max_retries=MAX_RETRIES,
            retry_timeout=RETRY_TIMEOUT_MS,
        )


if __name__ == "__main__":
    mode = f"web api {WEB_API_BASE_URL}" if WEB_API_BASE_URL else "in-process"
    print(f"[task-worker] started. engine={ENGINE_REST} topic={TOPIC_NAME} workerId={WORKER_ID} mode={mode}")
    worker = ExternalTaskWorker(worker_id=WORKER_ID, base_url=ENGINE_REST, config=WORKER_CONFIG)
    worker.subscribe(TOPIC_NAME, handle)
