"""Tests for the external task handlers with mocked ExternalTask objects."""

import json
import smtplib
from unittest.mock import MagicMock, patch

import pytest
import requests

from workers import email_worker, task_worker
from workflow_api.models import TaskData
from workflow_api.task_service import TaskService


def make_external_task(variables=None, task_id="ext-1", topic="process-task"):
    task = MagicMock()
    task.get_task_id.return_value = task_id
    task.get_topic_name.return_value = topic
    task.get_process_instance_id.return_value = "pi-1"
    task.get_variables.return_value = dict(variables or {})
    task.get_variable.side_effect = lambda name: (variables or {}).get(name)
    return task


class TestTaskWorker:
    def test_task_data_from_external_task(self):
        task = make_external_task({"taskName": "Check stock", "description": "nightly", "sku": "A-1"})
        data = task_worker.task_data_from(task)
        assert data == TaskData(id="ext-1", name="Check stock", description="nightly", parameters={"sku": "A-1"})

    def test_topic_is_the_default_name(self):
        assert task_worker.task_data_from(make_external_task()).name == "process-task"

    def test_handle_in_process(self):
        task = make_external_task({"sku": "A-1"})
        with patch.object(task_worker, "WEB_API_BASE_URL", ""), \
                patch.object(task_worker, "task_service", TaskService()):
            task_worker.handle(task)

        variables = task.complete.call_args.args[0]
        assert variables["taskStatus"] == "Processed"
        assert variables["taskResult"]["type"] == "Json"
        assert json.loads(variables["taskResult"]["value"]) == {
            "name": "process-task",
            "parameterCount": 1,
            "parameters": {"sku": "A-1"},
        }
        task.failure.assert_not_called()

    def test_handle_via_web_api(self):
        task = make_external_task({"sku": "A-1"})
        response = MagicMock()
        response.json.return_value = {"status": "Processed", "processedAt": "2024-05-01T10:00:00Z", "result": {}}
        with patch.object(task_worker, "WEB_API_BASE_URL", "http://api:8000/"), \
                patch.object(task_worker.requests, "post", return_value=response) as post:
            task_worker.handle(task)

        assert post.call_args.args[0] == "http://api:8000/api/tasks/process"
        assert post.call_args.kwargs["json"]["id"] == "ext-1"
        task.complete.assert_called_once_with({
            "taskStatus": "Processed",
            "processedAt": "2024-05-01T10:00:00Z",
            "taskResult": {"value": "{}", "type": "Json"},
        })

    def test_web_api_failure_is_reported_with_retries(self):
        task = make_external_task()
        with patch.object(task_worker, "WEB_API_BASE_URL", "http://api:8000"), \
                patch.object(task_worker.requests, "post", side_effect=requests.ConnectionError("refused")):
            task_worker.handle(task)

        task.complete.assert_not_called()
        kwargs = task.failure.call_args.kwargs
        assert kwargs["error_message"] == "refused"
        assert kwargs["max_retries"] == task_worker.MAX_RETRIES
        assert kwargs["retry_timeout"] == task_worker.RETRY_TIMEOUT_MS


class TestEmailWorker:
    @pytest.fixture
    def notifications(self):
        with patch.object(email_worker, "notifications") as mocked:
            yield mocked

    def test_sends_described_email(self, notifications):
        task = make_external_task({"toEmail": "anna@example.com", "subject": "Hi", "body": "Hello"})
        email_worker.handle(task)
        notifications.send_mail.assert_called_once_with("anna@example.com", "Hi", "Hello")
        task.complete.assert_called_once_with({"emailSent": True})

    def test_defaults(self, notifications):
        email_worker.handle(make_external_task())
        notifications.send_mail.assert_called_once_with(
            email_worker.DEFAULT_RECIPIENT, email_worker.DEFAULT_SUBJECT, email_worker.DEFAULT_BODY
        )

    def test_smtp_failure(self, notifications):
        notifications.send_mail.side_effect = smtplib.SMTPServerDisconnected("gone")
        task = make_external_task()
        email_worker.handle(task)
        task.complete.assert_not_called()
        assert task.failure.call_args.kwargs["max_retries"] == 3
