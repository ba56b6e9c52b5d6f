"""Unit tests for WorkflowService with a mocked engine client."""

from datetime import datetime, timezone

import pytest
import requests

from workflow_api.engine import EngineError
from workflow_api.models import WorkflowDeploymentRequest
from workflow_api.workflow_service import WorkflowService

BPMN = """<bpmn:definitions xmlns:bpmn="http://www.omg.org/spec/BPMN/20100524/MODEL" id="d">
  <bpmn:process id="orders" isExecutable="true">
    <bpmn:startEvent id="start"><bpmn:outgoing>f1</bpmn:outgoing></bpmn:startEvent>
    <bpmn:endEvent id="end"><bpmn:incoming>f1</bpmn:incoming></bpmn:endEvent>
    <bpmn:sequenceFlow id="f1" sourceRef="start" targetRef="end" />
  </bpmn:process>
</bpmn:definitions>"""


@pytest.fixture
def service(engine):
    engine.deploy.return_value = {"id": "dep-1"}
    engine.process_definitions.return_value = [
        {"id": "other:1:x", "key": "other"},
        {"id": "orders:1:y", "key": "orders"},
    ]
    engine.start_process_instance.return_value = {"id": "pi-1"}
    return WorkflowService(engine)


def make_request(**kwargs):
    defaults = {"bpmnXml": BPMN, "processName": "Orders", "processKey": "orders"}
    defaults.update(kwargs)
    return WorkflowDeploymentRequest(**defaults)


class TestProcessVariables:
    def test_later_sources_win(self):
        request = make_request(
            variables={"amount": 1, "note": "plain"},
            typedVariables={"amount": {"type": "number", "value": "2.5"}, "empty": None},
            complexData={"note": {"text": "complex"}},
        )
        assert WorkflowService.process_variables(request) == {
            "amount": 2.5,
            "note": {"text": "complex"},
            "empty": None,
        }


class TestDeployAndStart:
    @pytest.mark.parametrize("xml", [None, "", "   "])
    def test_empty_bpmn(self, service, engine, xml):
        response = service.deploy_and_start(make_request(bpmnXml=xml))
        assert response.success is False
        assert response.errorMessage == "BPMN XML cannot be empty"
        engine.deploy.assert_not_called()

    def test_deploys_and_starts_matching_definition(self, service, engine):
        response = service.deploy_and_start(make_request(variables={"amount": 3}, businessKey="B-1"))

        assert response.success is True
        assert response.deploymentId == "dep-1"
        assert response.processDefinitionId == "orders:1:y"
        assert response.processInstanceId == "pi-1"
        assert response.processVariables == {"amount": 3}
        engine.deploy.assert_called_once_with("Orders", "orders.bpmn", BPMN, tenant_id=None)
        engine.start_process_instance.assert_called_once_with("orders:1:y", {"amount": 3}, business_key="B-1")

    def test_deploy_only(self, service, engine):
        response = service.deploy_and_start(make_request(startImmediately=False))
        assert response.success is True
        assert response.processInstanceId is None
        engine.start_process_instance.assert_not_called()

    def test_missing_definition(self, service, engine):
        engine.process_definitions.return_value = []
        response = service.deploy_and_start(make_request())
        assert response.success is False
        assert response.deploymentId == "dep-1"
        assert response.errorMessage == "Failed to retrieve process definition after deployment"

    def test_service_tasks_are_injected_before_deploy(self, service, engine):
        service.deploy_and_start(make_request(injectServiceTasks=True))
        deployed_xml = engine.deploy.call_args.args[2]
        assert "Pre-Process Service Task" in deployed_xml
        assert "Post-Process Service Task" in deployed_xml

    @pytest.mark.parametrize(
        "error,message",
        [
            (EngineError(400, "ENGINE-09005 Could not parse BPMN process"), "ENGINE-09005"),
            (requests.ConnectionError("connection refused"), "connection refused"),
        ],
    )
    def test_engine_failures(self, service, engine, error, message, capsys):
        engine.deploy.side_effect = error
        response = service.deploy_and_start(make_request())
        assert response.success is False
        assert response.errorMessage.startswith("Deployment failed: ")
        assert message in response.errorMessage
        assert "Error deploying and starting process" in capsys.readouterr().err

    def test_broken_xml_with_injection(self, service):
        response = service.deploy_and_start(make_request(bpmnXml="<oops", injectServiceTasks=True))
        assert response.success is False
        assert response.errorMessage.startswith("Deployment failed: Invalid BPMN XML")


class TestProcessInstanceDetails:
    def test_running_instance(self, service, engine):
        engine.get_process_instance.return_value = {
            "id": "pi-1", "definitionId": "orders:1:y", "businessKey": "B-1", "suspended": False,
        }
        engine.get_variables.return_value = {"amount": 3}

        details = service.get_process_instance_details("pi-1")

        assert details == {
            "id": "pi-1",
            "processDefinitionId": "orders:1:y",
            "businessKey": "B-1",
            "isActive": True,
            "isSuspended": False,
            "variables": {"amount": 3},
        }
        engine.get_historic_process_instance.assert_not_called()

    def test_finished_instance_falls_back_to_history(self, service, engine):
        engine.get_process_instance.return_value = None
        engine.get_historic_process_instance.return_value = {
            "id": "pi-1", "processDefinitionId": "orders:1:y", "startTime": "s", "endTime": "e",
            "durationInMillis": 1200,
        }
        engine.get_historic_variables.return_value = {"approved": True}

        details = service.get_process_instance_details("pi-1")

        assert details["isActive"] is False
        assert details["durationInMillis"] == 1200
        assert details["variables"] == {"approved": True}

    def test_unknown_instance(self, service, engine):
        engine.get_process_instance.return_value = None
        engine.get_historic_process_instance.return_value = None
        assert service.get_process_instance_details("nope") == {"error": "Process instance nope not found"}

    def test_engine_failure(self, service, engine):
        engine.get_process_instance.side_effect = EngineError(500, "down")
        assert service.get_process_instance_details("pi-1") == {"error": "down"}


class TestActiveTasks:
    def test_maps_engine_fields(self, service, engine):
        engine.get_tasks.return_value = [{
            "id": "t1", "name": "Review", "assignee": None, "created": "2024-05-01T10:00:00.000+0000",
            "due": None, "priority": 50, "processInstanceId": "pi-1", "executionId": "ex",
        }]
        assert service.get_active_tasks("pi-1") == [{
            "id": "t1", "name": "Review", "assignee": None, "createTime": "2024-05-01T10:00:00.000+0000",
            "dueDate": None, "priority": 50, "processInstanceId": "pi-1",
        }]
        engine.get_tasks.assert_called_once_with("pi-1", active=True)

    def test_failure_gives_empty_list(self, service, engine):
        engine.get_tasks.side_effect = requests.Timeout("slow")
        assert service.get_active_tasks("pi-1") == []


class TestCompleteTask:
    def test_complete_task(self, service, engine):
        engine.get_task.return_value = {"id": "t1"}
        service.complete_task("t1", {"approved": True})
        engine.complete_task.assert_called_once_with("t1", {"approved": True})

    def test_unknown_task_is_not_found(self, service, engine):
        engine.get_task.return_value = None
        with pytest.raises(EngineError) as exc:
            service.complete_task("nope", {})
        assert exc.value.status_code == 404
        engine.complete_task.assert_not_called()


class TestReceiveWorkflowData:
    def test_starts_by_key_with_parsed_dates(self, service, engine):
        engine.start_process_by_key.return_value = {"id": "pi-7"}

        result = service.receive_workflow_data({
            "processKey": "onboarding",
            "variables": {"startDate": "2024-06-01T08:00:00Z", "name": "Ada"},
            "metadata": {"businessKey": "EMP-1"},
        })

        assert result["success"] is True
        assert result["processInstanceId"] == "pi-7"
        engine.start_process_by_key.assert_called_once_with(
            "onboarding",
            {"startDate": datetime(2024, 6, 1, 8, tzinfo=timezone.utc), "name": "Ada"},
            business_key="EMP-1",
        )

    def test_process_key_is_required(self, service):
        with pytest.raises(ValueError, match="processKey is required"):
            service.receive_workflow_data({"variables": {}})
