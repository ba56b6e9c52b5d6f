from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel


class TypedVariable(BaseModel):
    type: str = "object"
    value: Any = None


class WorkflowDeploymentRequest(BaseModel):
    bpmnXml: Optional[str] = None
    processName: Optional[str] = None
    processKey: Optional[str] = None
    variables: dict[str, Any] = {}
    typedVariables: dict[str, Optional[TypedVariable]] = {}
    complexData: dict[str, Any] = {}
    businessKey: Optional[str] = None
    tenantId: Optional[str] = None
    startImmediately: bool = True
    injectServiceTasks: bool = False


class WorkflowDeploymentResponse(BaseModel):
    deploymentId: Optional[str] = None
    processInstanceId: Optional[str] = None
    processDefinitionId: Optional[str] = None
    success: bool = False
    errorMessage: Optional[str] = None
    processVariables: Optional[dict[str, Any]] = None


# --- engine event hook -------------------------------------------------------

class TaskPayload(BaseModel):
    id: str
    name: Optional[str] = None
    assignee: Optional[str] = None
    due: Optional[str] = None
    priority: Optional[int] = None
    processInstanceId: Optional[str] = None
    processDefinitionId: Optional[str] = None
    executionId: Optional[str] = None
    taskDefinitionKey: Optional[str] = None
    deleteReason: Optional[str] = None


class ExecutionPayload(BaseModel):
    id: Optional[str] = None
    processInstanceId: Optional[str] = None
    processDefinitionId: Optional[str] = None
    currentActivityId: Optional[str] = None
    currentActivityName: Optional[str] = None
    currentTransitionId: Optional[str] = None
    businessKey: Optional[str] = None


class EngineEventPayload(BaseModel):
    kind: Literal["task", "execution", "process"]
    eventName: str
    task: Optional[TaskPayload] = None
    execution: Optional[ExecutionPayload] = None
    processInstanceId: Optional[str] = None
    processDefinitionKey: Optional[str] = None
    # plain values or engine typed values ({"value": .., "type": ..})
    variables: dict[str, Any] = {}


# --- tasks handled outside the engine ----------------------------------------

class TaskData(BaseModel):
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    parameters: dict[str, Any] = {}
    createdAt: Optional[datetime] = None


class TaskResult(BaseModel):
    taskId: str
    status: str
    processedAt: datetime
    result: Any = None


class TaskStatus(BaseModel):
    id: str
    status: str
    lastUpdated: Optional[datetime] = None


class TaskCompletionData(BaseModel):
    result: Optional[str] = None
    success: bool = True
    errorMessage: Optional[str] = None


# --- document stores ---------------------------------------------------------

class User(BaseModel):
    id: Optional[str] = None
    name: str
    email: Optional[str] = None


class Product(BaseModel):
    id: Optional[str] = None
    name: str
    price: Optional[float] = None
