"""Unit tests for EngineClient against a mocked requests session."""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from workflow_api.engine import EngineClient, EngineError

BASE = "http://engine:8080/engine-rest"


def make_response(status_code=200, body=None, text=None):
    response = MagicMock()
    response.status_code = status_code
    if body is not None:
        response.json.return_value = body
        response.text = json.dumps(body)
    else:
        response.json.side_effect = ValueError("no json")
        response.text = text or ""
    response.content = response.text.encode("utf-8")
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    return EngineClient(base_url=BASE + "/", auth=("demo", "demo"), session=session, timeout=5)


class TestRequests:
    def test_base_url_is_normalised(self, client):
        assert client.base_url == BASE

    def test_error_status_raises_with_engine_message(self, client, session):
        session.request.return_value = make_response(500, {"type": "ProcessEngineException", "message": "boom"})
        with pytest.raises(EngineError) as exc:
            client.get_tasks("p1")
        assert exc.value.status_code == 500
        assert exc.value.message == "boom"

    def test_error_without_json_uses_text(self, client, session):
        session.request.return_value = make_response(502, text="Bad Gateway")
        with pytest.raises(EngineError, match="Bad Gateway"):
            client.get_tasks("p1")

    def test_no_content_returns_none(self, client, session):
        session.request.return_value = make_response(204)
        assert client.set_assignee("t1", "anna") is None
        session.request.assert_called_once_with(
            "POST", f"{BASE}/task/t1/assignee", auth=("demo", "demo"), timeout=5, json={"userId": "anna"}
        )

    def test_missing_instance_returns_none(self, client, session):
        session.request.return_value = make_response(404, {"message": "not found"})
        assert client.get_process_instance("p1") is None

    def test_other_errors_are_not_hidden_by_lookup(self, client, session):
        session.request.return_value = make_response(500, {"message": "down"})
        with pytest.raises(EngineError):
            client.get_historic_process_instance("p1")


class TestDeployment:
    def test_deploy_posts_multipart(self, client, session):
        session.request.return_value = make_response(200, {"id": "dep-1"})

        result = client.deploy("Orders", "orders.bpmn", "<xml/>", tenant_id="acme")

        assert result == {"id": "dep-1"}
        args, kwargs = session.request.call_args
        assert args == ("POST", f"{BASE}/deployment/create")
        assert kwargs["data"]["deployment-name"] == "Orders"
        assert kwargs["data"]["tenant-id"] == "acme"
        assert kwargs["files"]["orders.bpmn"][1] == b"<xml/>"

    def test_process_definitions_by_deployment(self, client, session):
        session.request.return_value = make_response(200, [{"id": "orders:1:abc", "key": "orders"}])
        assert client.process_definitions("dep-1") == [{"id": "orders:1:abc", "key": "orders"}]
        assert session.request.call_args.kwargs["params"] == {"deploymentId": "dep-1"}


class TestRuntime:
    def test_start_sends_typed_variables(self, client, session):
        session.request.return_value = make_response(200, {"id": "pi-1"})

        client.start_process_instance("orders:1:abc", {"amount": 10, "rush": True}, business_key="B-7")

        body = session.request.call_args.kwargs["json"]
        assert body == {
            "variables": {
                "amount": {"value": 10, "type": "Integer"},
                "rush": {"value": True, "type": "Boolean"},
            },
            "businessKey": "B-7",
        }

    def test_start_by_key(self, client, session):
        session.request.return_value = make_response(200, {"id": "pi-2"})
        assert client.start_process_by_key("orders", {})["id"] == "pi-2"
        assert session.request.call_args.args[1] == f"{BASE}/process-definition/key/orders/start"

    def test_get_variables_unwraps_values(self, client, session):
        session.request.return_value = make_response(200, {
            "amount": {"value": 10, "type": "Integer"},
            "payload": {"value": '{"a": 1}', "type": "Json"},
        })
        assert client.get_variables("pi-1") == {"amount": 10, "payload": {"a": 1}}

    def test_historic_variables(self, client, session):
        session.request.return_value = make_response(200, [
            {"name": "approved", "type": "Boolean", "value": True},
            {"name": "approvalDate", "type": "Date", "value": "2024-05-01T10:00:00.000+0000"},
        ])
        assert client.get_historic_variables("pi-1") == {
            "approved": True,
            "approvalDate": datetime(2024, 5, 1, 10, tzinfo=timezone.utc),
        }

    def test_modify_variables(self, client, session):
        session.request.return_value = make_response(204)
        client.modify_variables("pi-1", {"taskStatus": "CREATED"})
        assert session.request.call_args.kwargs["json"] == {
            "modifications": {"taskStatus": {"value": "CREATED", "type": "String"}}
        }


class TestTasks:
    def test_update_task_keeps_current_fields(self, client, session):
        session.request.side_effect = [
            make_response(200, {"id": "t1", "name": "Review", "assignee": "anna", "priority": 50, "created": "x"}),
            make_response(204),
        ]

        client.update_task("t1", {"due": datetime(2024, 5, 2, 9, tzinfo=timezone.utc)})

        put = session.request.call_args_list[1]
        assert put.args == ("PUT", f"{BASE}/task/t1")
        assert put.kwargs["json"] == {
            "name": "Review",
            "assignee": "anna",
            "priority": 50,
            "due": "2024-05-02T09:00:00.000+0000",
        }

    def test_update_missing_task_raises_not_found(self, client, session):
        session.request.return_value = make_response(404, {"message": "gone"})
        with pytest.raises(EngineError) as exc:
            client.update_task("t1", {"priority": 1})
        assert exc.value.status_code == 404

    def test_complete_task(self, client, session):
        session.request.return_value = make_response(204)
        client.complete_task("t1", {"approved": False})
        assert session.request.call_args.kwargs["json"] == {
            "variables": {"approved": {"value": False, "type": "Boolean"}}
        }
