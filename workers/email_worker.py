import os
import smtplib
import sys

from camunda.external_task.external_task import ExternalTask, TaskResult
from camunda.external_task.external_task_worker import ExternalTaskWorker

from workflow_api.services import NotificationService

# Configuration from environment
ENGINE_REST = os.getenv("ENGINE_REST", "http://camunda:8080/engine-rest")
TOPIC_NAME = os.getenv("TOPIC_NAME", "notify-topic")
WORKER_ID = os.getenv("WORKER_ID", f"email-worker-{TOPIC_NAME}")

DEFAULT_RECIPIENT = "recipient@local.com"
DEFAULT_SUBJECT = "Notification"
DEFAULT_BODY = "You have a new task waiting in the workflow inbox."

notifications = NotificationService(send_email=True)


def handle(task: ExternalTask) -> TaskResult:
    to_email = task.get_variable("toEmail") or DEFAULT_RECIPIENT
    subject = task.get_variable("subject") or DEFAULT_SUBJECT
    body = task.get_variable("body") or DEFAULT_BODY

    try:
        print(f"[{TOPIC_NAME}] Sending email to {to_email}...")
        notifications.send_mail(to_email, subject, body)
        return task.complete({"emailSent": True})
    except (smtplib.SMTPException, OSError) as e:
        print(f"[{TOPIC_NAME}] Error: {e}", file=sys.stderr)
        return task.failure(
            error_message=str(e),
            error_details=repr(e),
            max_retries=3,
            retry_timeout=10000,
        )


if __name__ == "__main__":
    print(f"Starting email worker for topic: {TOPIC_NAME}")
    worker = ExternalTaskWorker(worker_id=WORKER_ID, base_url=ENGINE_REST)
    worker.subscribe(TOPIC_NAME, handle)
