import sys

import requests

from workflow_api.bpmn import inject_service_tasks
from workflow_api.engine import EngineClient, EngineError
from workflow_api.models import WorkflowDeploymentRequest, WorkflowDeploymentResponse
from workflow_api.variables import (
    convert_typed_variable,
    extract_map,
    extract_string,
    process_complex_object,
    receive_dictionary,
)

ENGINE_FAILURES = (EngineError, requests.RequestException)


class WorkflowService:
    def __init__(self, engine: EngineClient = None):
        self.engine = engine or EngineClient()

    @staticmethod
    def process_variables(request: WorkflowDeploymentRequest) -> dict:
        """Plain variables first, then typed ones, then complex objects; later wins."""
        processed = dict(request.variables or {})
        for name, typed in (request.typedVariables or {}).items():
            processed[name] = convert_typed_variable(typed)
        for name, data in (request.complexData or {}).items():
            processed[name] = process_complex_object(data)
        return processed

    def deploy_and_start(self, request: WorkflowDeploymentRequest) -> WorkflowDeploymentResponse:
        response = WorkflowDeploymentResponse()

        if not request.bpmnXml or not request.bpmnXml.strip():
            response.errorMessage = "BPMN XML cannot be empty"
            return response

        try:
            variables = self.process_variables(request)

            bpmn_xml = request.bpmnXml
            if request.injectServiceTasks:
                bpmn_xml = inject_service_tasks(bpmn_xml)

            deployment = self.engine.deploy(
                request.processName or request.processKey or "workflow",
                f"{request.processKey or 'process'}.bpmn",
                bpmn_xml,
                tenant_id=request.tenantId,
            )
            response.deploymentId = deployment["id"]
            print(f"[workflow] Process deployed successfully with deployment ID: {response.deploymentId}")

            definitions = self.engine.process_definitions(response.deploymentId)
            if not definitions:
                response.errorMessage = "Failed to retrieve process definition after deployment"
                return response

            # one resource may hold several processes
            definition = next((d for d in definitions if d.get("key") == request.processKey), definitions[0])
            response.processDefinitionId = definition["id"]
            print(f"[workflow] Process definition ID: {response.processDefinitionId}")

            if request.startImmediately:
                instance = self.engine.start_process_instance(
                    definition["id"], variables, business_key=request.businessKey
                )
                response.processInstanceId = instance["id"]
                print(f"[workflow] Process instance started with ID: {response.processInstanceId}")

            response.processVariables = variables
            response.success = True
        except ENGINE_FAILURES + (ValueError,) as e:
            print(f"[workflow] Error deploying and starting process: {e}", file=sys.stderr)
            response.success = False
            response.errorMessage = f"Deployment failed: {e}"

        return response

    def get_process_instance_details(self, process_instance_id: str) -> dict:
        details = {}
        try:
            instance = self.engine.get_process_instance(process_instance_id)
            if instance is not None:
                details["id"] = instance.get("id")
                details["processDefinitionId"] = instance.get("definitionId")
                details["businessKey"] = instance.get("businessKey")
                details["isActive"] = True
                details["isSuspended"] = bool(instance.get("suspended"))
                details["variables"] = self.engine.get_variables(process_instance_id)
                return details

            historic = self.engine.get_historic_process_instance(process_instance_id)
            if historic is None:
                details["error"] = f"Process instance {process_instance_id} not found"
                return details

            details["id"] = historic.get("id")
            details["processDefinitionId"] = historic.get("processDefinitionId")
            details["businessKey"] = historic.get("businessKey")
            details["isActive"] = False
            details["startTime"] = historic.get("startTime")
            details["endTime"] = historic.get("endTime")
            details["durationInMillis"] = historic.get("durationInMillis")
            details["variables"] = self.engine.get_historic_variables(process_instance_id)
        except ENGINE_FAILURES as e:
            print(f"[workflow] Error retrieving process instance details: {e}", file=sys.stderr)
            details["error"] = str(e)

        return details

    def get_active_tasks(self, process_instance_id: str) -> list:
        try:
            tasks = self.engine.get_tasks(process_instance_id, active=True)
        except ENGINE_FAILURES as e:
            print(f"[workflow] Error retrieving active tasks: {e}", file=sys.stderr)
            return []

        return [
            {
                "id": t.get("id"),
                "name": t.get("name"),
                "assignee": t.get("assignee"),
                "createTime": t.get("created"),
                "dueDate": t.get("due"),
                "priority": t.get("priority"),
                "processInstanceId": t.get("processInstanceId"),
            }
            for t in tasks
        ]

    def complete_task(self, task_id: str, variables: dict = None):
        # the engine answers 500 for an unknown task on complete
        if self.engine.get_task(task_id) is None:
            raise EngineError(404, f"Cannot find task with id {task_id}")
        self.engine.complete_task(task_id, process_complex_object(variables or {}))
        print(f"[workflow] Task {task_id} completed")

    def receive_workflow_data(self, data: dict) -> dict:
        """Start a process from a loosely typed map sent by another service.

        Expects ``processKey``; ``variables`` and ``metadata`` are optional maps.
        """
        processed = receive_dictionary(data)

        process_key = extract_string(processed, "processKey")
        if not process_key:
            raise ValueError("processKey is required")
        variables = extract_map(processed, "variables")
        metadata = extract_map(processed, "metadata")
        business_key = extract_string(metadata, "businessKey") or extract_string(processed, "businessKey")

        instance = self.engine.start_process_by_key(process_key, variables, business_key=business_key)
        print(f"[workflow] Started {process_key} from received data: {instance['id']}")
        return {"success": True, "processInstanceId": instance["id"], "receivedData": processed}
