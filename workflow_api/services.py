import smtplib
import sys
from collections import deque
from datetime import datetime, timezone
from email.message import EmailMessage

import psycopg2
from pymongo.errors import PyMongoError

from workflow_api import config
from workflow_api.db import get_connection, insert_audit_entry
from workflow_api.mongo import secondary_database
from workflow_api.variables import process_complex_object


class NotificationService:
    """Prints every notification; mails it through SMTP when NOTIFY_EMAIL is on."""

    def __init__(self, send_email: bool = None, smtp_host: str = None, smtp_port: int = None,
                 from_email: str = None, email_domain: str = None, owner_email: str = None):
        self.email_enabled = config.NOTIFY_EMAIL if send_email is None else send_email
        self.smtp_host = smtp_host or config.MAILHOG_HOST
        self.smtp_port = smtp_port or config.MAILHOG_PORT
        self.from_email = from_email or config.FROM_EMAIL
        self.email_domain = email_domain or config.NOTIFY_EMAIL_DOMAIN
        self.owner_email = owner_email or config.PROCESS_OWNER_EMAIL

    def _address(self, recipient: str) -> str:
        return recipient if "@" in recipient else f"{recipient}@{self.email_domain}"

    def send_mail(self, recipient: str, subject: str, body: str):
        """Send one message; SMTP errors propagate."""
        msg = EmailMessage()
        msg["From"] = self.from_email
        msg["To"] = self._address(recipient)
        msg["Subject"] = subject

        # Check if body starts with HTML tag to set subtype
        if body.strip().startswith("<") and "</div>" in body:
            msg.set_content("Your email client does not support HTML. Please view in a compatible client.")
            msg.add_alternative(body, subtype="html")
        else:
            msg.set_content(body)

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as s:
            s.send_message(msg)

    def _deliver(self, recipient: str, subject: str, body: str) -> bool:
        if not self.email_enabled or not recipient:
            return False
        try:
            self.send_mail(recipient, subject, body)
            return True
        except (smtplib.SMTPException, OSError) as e:
            print(f"[notify] Failed to send email to {recipient}: {e}", file=sys.stderr)
            return False

    def send_task_assignment_notification(self, assignee: str, task):
        print(f"[notify] Sending assignment notification to {assignee} for task {task.name}")
        return self._deliver(assignee, f"New task: {task.name}",
                             f"Task '{task.name}' ({task.id}) has been assigned to you.")

    def send_task_completion_notification(self, recipient: str, task):
        print(f"[notify] Sending completion notification to {recipient} for task {task.name}")
        return self._deliver(recipient, f"Task completed: {task.name}",
                             f"Task '{task.name}' ({task.id}) was completed by {task.assignee}.")

    def send_task_cancellation_notification(self, assignee: str, task, reason: str):
        print(f"[notify] Sending cancellation notification to {assignee} for task {task.name}, reason: {reason}")
        return self._deliver(assignee, f"Task cancelled: {task.name}",
                             f"Task '{task.name}' ({task.id}) was cancelled. Reason: {reason}")

    def send_process_start_notification(self, process_instance_id: str, process_definition_key: str):
        print(f"[notify] Process {process_definition_key} started: {process_instance_id}")
        return self._deliver(self.owner_email, f"Process started: {process_definition_key}",
                             f"Process instance {process_instance_id} has started.")

    def send_process_end_notification(self, process_instance_id: str, process_definition_key: str):
        print(f"[notify] Process {process_definition_key} ended: {process_instance_id}")
        return self._deliver(self.owner_email, f"Process completed: {process_definition_key}",
                             f"Process instance {process_instance_id} has completed.")

    def send_final_approval_notification(self, process_instance_id: str, approver: str):
        print(f"[notify] Final approval for {process_instance_id} by {approver}")
        return self._deliver(self.owner_email, "Request approved",
                             f"Process instance {process_instance_id} was approved by {approver}.")

    def send_rejection_notification(self, process_instance_id: str, approver: str):
        print(f"[notify] Rejection for {process_instance_id} by {approver}")
        return self._deliver(self.owner_email, "Request rejected",
                             f"Process instance {process_instance_id} was rejected by {approver}.")

    def send_approval_notification(self, process_instance_id: str, approver: str):
        print(f"[notify] Approval step passed for {process_instance_id} by {approver}")
        return self._deliver(self.owner_email, "Approval step passed",
                             f"Approver {approver} approved process instance {process_instance_id}.")


class AuditService:
    """AUDIT lines on stdout, the last few entries in memory, optionally a row in Postgres."""

    def __init__(self, to_db: bool = None, connection_factory=None, max_entries: int = 1000):
        self.to_db = config.AUDIT_TO_DB if to_db is None else to_db
        self.connection_factory = connection_factory or get_connection
        self.entries = deque(maxlen=max_entries)

    def _record(self, action: str, message: str, **details):
        print(f"AUDIT: {message}")
        self.entries.append({"action": action, "at": datetime.now(timezone.utc), **details})
        if not self.to_db:
            return

        try:
            conn = self.connection_factory()
            try:
                insert_audit_entry(conn, action, details)
            finally:
                conn.close()
        except psycopg2.Error as e:
            print(f"[audit] Failed to write audit row for {action}: {e}", file=sys.stderr)

    def log_task_creation(self, task_id: str, task_name: str, process_instance_id: str):
        self._record("TASK_CREATED",
                     f"Task created - ID: {task_id}, Name: {task_name}, ProcessInstance: {process_instance_id}",
                     taskId=task_id, taskName=task_name, processInstanceId=process_instance_id)

    def log_task_assignment(self, task_id: str, assignee: str):
        self._record("TASK_ASSIGNED", f"Task assigned - ID: {task_id}, Assignee: {assignee}",
                     taskId=task_id, assignee=assignee)

    def log_task_completion(self, task_id: str, assignee: str):
        self._record("TASK_COMPLETED", f"Task completed - ID: {task_id}, CompletedBy: {assignee}",
                     taskId=task_id, assignee=assignee)

    def log_task_deletion(self, task_id: str, delete_reason: str):
        self._record("TASK_DELETED", f"Task deleted - ID: {task_id}, Reason: {delete_reason}",
                     taskId=task_id, deleteReason=delete_reason)

    def log_process_start(self, process_instance_id: str, process_definition_key: str):
        self._record("PROCESS_STARTED",
                     f"Process started - Instance: {process_instance_id}, Definition: {process_definition_key}",
                     processInstanceId=process_instance_id, processDefinitionKey=process_definition_key)

    def log_process_end(self, process_instance_id: str, process_definition_key: str):
        self._record("PROCESS_ENDED",
                     f"Process ended - Instance: {process_instance_id}, Definition: {process_definition_key}",
                     processInstanceId=process_instance_id, processDefinitionKey=process_definition_key)

    def log_activity_start(self, process_instance_id: str, activity_id: str, activity_name: str):
        self._record("ACTIVITY_STARTED",
                     f"Activity started - Process: {process_instance_id}, Activity: {activity_id} ({activity_name})",
                     processInstanceId=process_instance_id, activityId=activity_id, activityName=activity_name)

    def log_activity_end(self, process_instance_id: str, activity_id: str, activity_name: str):
        self._record("ACTIVITY_ENDED",
                     f"Activity ended - Process: {process_instance_id}, Activity: {activity_id} ({activity_name})",
                     processInstanceId=process_instance_id, activityId=activity_id, activityName=activity_name)

    def log_sequence_flow_taken(self, process_instance_id: str, transition_id: str):
        self._record("SEQUENCE_FLOW_TAKEN",
                     f"Sequence flow taken - Process: {process_instance_id}, Transition: {transition_id}",
                     processInstanceId=process_instance_id, transitionId=transition_id)


class TaskArchiver:
    """Copies completed tasks into the secondary Mongo database (collection ``task_archive``)."""

    def __init__(self, enabled: bool = None, collection=None):
        self.enabled = config.ARCHIVE_TASKS if enabled is None else enabled
        self._collection = collection

    @property
    def collection(self):
        if self._collection is None:
            self._collection = secondary_database()["task_archive"]
        return self._collection

    def archive(self, task):
        print(f"[archive] Archiving data for completed task: {task.id}")
        if not self.enabled:
            return None

        doc = {
            "taskId": task.id,
            "name": task.name,
            "assignee": task.assignee,
            "processInstanceId": task.process_instance_id,
            "variables": process_complex_object(dict(task.variables)),
            "archivedAt": datetime.now(timezone.utc),
        }
        try:
            return self.collection.insert_one(doc).inserted_id
        except PyMongoError as e:
            print(f"[archive] Failed to archive task {task.id}: {e}", file=sys.stderr)
            return None
