import json
import sys
from functools import lru_cache
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from workflow_api import config
from workflow_api.engine import EngineClient
from workflow_api.events import CamundaEventSubscriber, dispatch_payload, sync_changes
from workflow_api.models import (
    EngineEventPayload,
    Product,
    TaskCompletionData,
    TaskData,
    User,
    WorkflowDeploymentRequest,
)
from workflow_api.mongo import DataService
from workflow_api.task_service import TaskService, UnknownTaskError
from workflow_api.variables import to_java_friendly, validate_for_java, validate_variables
from workflow_api.workflow_service import ENGINE_FAILURES, WorkflowService

app = FastAPI(title="workflow-api")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache
def get_engine() -> EngineClient:
    return EngineClient()


@lru_cache
def get_workflow_service() -> WorkflowService:
    return WorkflowService(get_engine())


@lru_cache
def get_subscriber() -> CamundaEventSubscriber:
    return CamundaEventSubscriber()


@lru_cache
def get_task_service() -> TaskService:
    return TaskService()


@lru_cache
def get_data_service() -> DataService:
    return DataService()


@app.get("/")
def home():
    return {"message": "Workflow API is running!"}


# --- workflow ----------------------------------------------------------------

@app.post("/api/workflow/deploy-and-start")
def deploy_and_start(request: WorkflowDeploymentRequest, service: WorkflowService = Depends(get_workflow_service)):
    """
    Deploys the posted BPMN and starts an instance with the merged variables.
    A failed deployment answers 400 with the same body shape as a successful one.
    """
    try:
        response = service.deploy_and_start(request)
    except Exception as e:
        print(f"Error in /api/workflow/deploy-and-start: {e}", file=sys.stderr)
        raise HTTPException(status_code=500, detail=f"Internal server error: {e}")

    if not response.success:
        return JSONResponse(status_code=400, content=response.model_dump(mode="json"))
    return response


@app.get("/api/workflow/process-instance/{process_instance_id}")
def get_process_instance(process_instance_id: str, service: WorkflowService = Depends(get_workflow_service)):
    details = service.get_process_instance_details(process_instance_id)
    if "error" in details and "id" not in details:
        status = 404 if details["error"].endswith("not found") else 500
        raise HTTPException(status_code=status, detail=details["error"])
    return to_java_friendly(details)


@app.get("/api/workflow/active-tasks/{process_instance_id}")
def get_active_tasks(process_instance_id: str, service: WorkflowService = Depends(get_workflow_service)):
    return service.get_active_tasks(process_instance_id)


@app.post("/api/workflow/tasks/{task_id}/complete")
def complete_workflow_task(task_id: str, variables: Optional[dict[str, Any]] = None,
                           service: WorkflowService = Depends(get_workflow_service)):
    try:
        service.complete_task(task_id, variables or {})
    except ENGINE_FAILURES as e:
        print(f"Error completing task {task_id}: {e}", file=sys.stderr)
        status = getattr(e, "status_code", 500)
        raise HTTPException(status_code=status if status in (400, 404) else 500, detail=str(e))
    return {"status": "success", "taskId": task_id}


# --- dictionaries from other services ----------------------------------------

def _receive(service: WorkflowService, data: dict) -> dict:
    try:
        return service.receive_workflow_data(data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ENGINE_FAILURES as e:
        print(f"Error processing workflow data: {e}", file=sys.stderr)
        raise HTTPException(status_code=500, detail=f"Error processing workflow data: {e}")


@app.post("/api/dictionary/deploy")
def deploy_dictionary(data: dict[str, Any], service: WorkflowService = Depends(get_workflow_service)):
    variables = data.get("variables")
    if isinstance(variables, dict) and not validate_variables(variables):
        raise HTTPException(status_code=400, detail="Invalid variable names or values")
    return _receive(service, data)


@app.post("/api/dictionary/deploy-string")
async def deploy_dictionary_string(request: Request, service: WorkflowService = Depends(get_workflow_service)):
    """Same as /api/dictionary/deploy for callers that post the JSON as a plain string."""
    raw = (await request.body()).decode("utf-8")
    try:
        data = json.loads(raw)
        # a JSON string holding the JSON document
        if isinstance(data, str):
            data = json.loads(data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Failed to parse JSON: {e}")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Failed to parse JSON: expected an object")

    return await run_in_threadpool(_receive, service, data)


@app.post("/api/dictionary/validate")
def validate_dictionary(data: dict[str, Any]):
    return validate_for_java(data)


# --- engine event hook -------------------------------------------------------

@app.post("/api/events")
def receive_engine_event(payload: EngineEventPayload, sync: Optional[bool] = None,
                         subscriber: CamundaEventSubscriber = Depends(get_subscriber),
                         engine: EngineClient = Depends(get_engine)):
    """
    Called by the engine-side listener after the transaction commits.
    Runs the subscriber on a delegate built from the payload, then writes
    whatever the handlers changed back to the engine.
    """
    try:
        handled, delegate = dispatch_payload(subscriber, payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    do_sync = config.EVENT_SYNC if sync is None else sync
    synced = False
    if handled and do_sync:
        synced = sync_changes(engine, delegate)

    return {
        "handled": handled,
        "synced": synced,
        "variables": to_java_friendly(delegate.changed),
        "task": to_java_friendly(getattr(delegate, "task_changes", None) or {}),
    }


# --- tasks handed out to external workers --------------------------------------

@app.post("/api/tasks/process")
def process_task(task: TaskData, service: TaskService = Depends(get_task_service)):
    return service.process_task(task)


@app.get("/api/tasks/{task_id}/status")
def get_task_status(task_id: str, service: TaskService = Depends(get_task_service)):
    try:
        return service.get_task_status(task_id)
    except UnknownTaskError:
        raise HTTPException(status_code=404, detail=f"Task with ID {task_id} not found")


@app.put("/api/tasks/{task_id}/complete")
def complete_task(task_id: str, completion: TaskCompletionData, service: TaskService = Depends(get_task_service)):
    return service.complete_task(task_id, completion)


# --- document stores ---------------------------------------------------------

@app.post("/api/users")
def save_user(user: User, service: DataService = Depends(get_data_service)):
    try:
        return service.save_user(user.model_dump())
    except PyMongoError as e:
        print(f"Error in POST /api/users: {e}", file=sys.stderr)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/products")
def save_product(product: Product, service: DataService = Depends(get_data_service)):
    try:
        return service.save_product(product.model_dump())
    except PyMongoError as e:
        print(f"Error in POST /api/products: {e}", file=sys.stderr)
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/users/gmail")
def get_gmail_users(service: DataService = Depends(get_data_service)):
    try:
        return service.find_users_by_email_domain("@gmail.com")
    except PyMongoError as e:
        print(f"Error in /api/users/gmail: {e}", file=sys.stderr)
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/products/expensive")
def get_expensive_products(service: DataService = Depends(get_data_service)):
    try:
        return service.find_expensive_products(100)
    except PyMongoError as e:
        print(f"Error in /api/products/expensive: {e}", file=sys.stderr)
        raise HTTPException(status_code=500, detail=str(e))
