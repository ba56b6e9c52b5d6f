"""
Process engine lifecycle events.

The engine reports task, execution and process-instance lifecycle events.
``CamundaEventSubscriber`` runs one handler per event name and accepts
the events in three shapes:

* generic ``TaskEvent`` / ``ExecutionEvent`` / ``ProcessInstanceEvent``
  wrappers (``handle_*_event``),
* bare delegates carrying their own ``event_name`` (``notify``),
* one class per lifecycle stage, ``TaskCreateEvent`` and friends
  (``publish``).

Handlers only touch the delegate: variables set on it are collected in
``delegate.changed`` (and assignee / due date in ``task_changes``) so the
caller can push them back to the engine with ``sync_changes``.
"""
import sys
from datetime import datetime, timedelta, timezone

import requests

from workflow_api.engine import EngineError
from workflow_api.services import AuditService, NotificationService, TaskArchiver
from workflow_api.variables import from_engine_variables, is_date_string, parse_date

TASK_CREATE = "create"
TASK_ASSIGNMENT = "assignment"
TASK_COMPLETE = "complete"
TASK_DELETE = "delete"

EXECUTION_START = "start"
EXECUTION_END = "end"
EXECUTION_TAKE = "take"

PROCESS_START = "start"
PROCESS_END = "end"

DEPARTMENT_ASSIGNEES = {
    "hr": "hr.manager",
    "finance": "finance.manager",
    "it": "it.manager",
    "legal": "legal.manager",
}
DEFAULT_ASSIGNEE = "default.manager"
HIGH_PRIORITY = ("high", "important")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_datetime(value):
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if is_date_string(value):
        try:
            return _as_datetime(parse_date(value))
        except ValueError:
            return None
    return None


def _millis_between(start: datetime, end: datetime) -> int:
    return int((_as_datetime(end) - _as_datetime(start)).total_seconds() * 1000)


class _VariableScope:
    def __init__(self, variables: dict = None):
        self.variables = dict(variables or {})
        self.changed = {}

    def get_variable(self, name: str, default=None):
        return self.variables.get(name, default)

    def set_variable(self, name: str, value):
        self.variables[name] = value
        self.changed[name] = value


class DelegateTask(_VariableScope):
    def __init__(self, id: str, name: str = None, assignee: str = None, due_date: datetime = None,
                 priority: int = None, process_instance_id: str = None, process_definition_id: str = None,
                 delete_reason: str = None, event_name: str = None, variables: dict = None):
        super().__init__(variables)
        self.id = id
        self.name = name
        self.assignee = assignee
        self.due_date = due_date
        self.priority = priority
        self.process_instance_id = process_instance_id
        self.process_definition_id = process_definition_id
        self.delete_reason = delete_reason
        self.event_name = event_name
        self.task_changes = {}

    def set_assignee(self, assignee: str):
        self.assignee = assignee
        self.task_changes["assignee"] = assignee

    def set_due_date(self, due_date: datetime):
        self.due_date = due_date
        self.task_changes["due"] = due_date


class DelegateExecution(_VariableScope):
    def __init__(self, id: str = None, process_instance_id: str = None, process_definition_id: str = None,
                 current_activity_id: str = None, current_activity_name: str = None,
                 current_transition_id: str = None, business_key: str = None,
                 event_name: str = None, variables: dict = None):
        super().__init__(variables)
        self.id = id
        self.process_instance_id = process_instance_id
        self.process_definition_id = process_definition_id
        self.current_activity_id = current_activity_id
        self.current_activity_name = current_activity_name
        self.current_transition_id = current_transition_id
        self.business_key = business_key
        self.event_name = event_name

    @property
    def process_definition_key(self):
        # definition ids look like "invoice:3:8f1c..."
        if not self.process_definition_id:
            return None
        return self.process_definition_id.split(":")[0]


# -- generic event wrappers ---------------------------------------------------

class TaskEvent:
    def __init__(self, event_name: str, task: DelegateTask):
        self.event_name = event_name
        self.task = task


class ExecutionEvent:
    def __init__(self, event_name: str, execution: DelegateExecution):
        self.event_name = event_name
        self.execution = execution


class ProcessInstanceEvent:
    def __init__(self, event_name: str, process_instance_id: str, process_definition_key: str,
                 execution: DelegateExecution = None):
        self.event_name = event_name
        self.process_instance_id = process_instance_id
        self.process_definition_key = process_definition_key
        self.execution = execution or DelegateExecution(
            process_instance_id=process_instance_id,
            process_definition_id=process_definition_key,
            event_name=event_name,
        )


# -- one class per lifecycle stage --------------------------------------------

class DelegateEvent:
    def __init__(self, delegate):
        self.delegate = delegate


class TaskCreateEvent(DelegateEvent):
    pass


class TaskAssignEvent(DelegateEvent):
    pass


class TaskCompleteEvent(DelegateEvent):
    pass


class TaskDeleteEvent(DelegateEvent):
    pass


class ExecutionStartEvent(DelegateEvent):
    pass


class ExecutionEndEvent(DelegateEvent):
    pass


class SequenceFlowTakeEvent(DelegateEvent):
    pass


class ProcessStartEvent(DelegateEvent):
    pass


class ProcessEndEvent(DelegateEvent):
    pass


class CamundaEventSubscriber:
    def __init__(self, notification_service: NotificationService = None, audit_service: AuditService = None,
                 archiver: TaskArchiver = None, clock=None):
        self.notifications = notification_service or NotificationService()
        self.audit = audit_service or AuditService()
        self.archiver = archiver or TaskArchiver()
        self.clock = clock or _utcnow

        self._task_handlers = {
            TASK_CREATE: self._on_task_create,
            TASK_ASSIGNMENT: self._on_task_assignment,
            TASK_COMPLETE: self._on_task_complete,
            TASK_DELETE: self._on_task_delete,
        }
        self._execution_handlers = {
            EXECUTION_START: self._on_execution_start,
            EXECUTION_END: self._on_execution_end,
            EXECUTION_TAKE: self._on_execution_take,
        }
        self._process_handlers = {
            PROCESS_START: self._on_process_start,
            PROCESS_END: self._on_process_end,
        }
        self._typed_handlers = {
            TaskCreateEvent: self._on_task_create,
            TaskAssignEvent: self._on_task_assignment,
            TaskCompleteEvent: self._on_task_complete,
            TaskDeleteEvent: self._on_task_delete,
            ExecutionStartEvent: self._on_execution_start,
            ExecutionEndEvent: self._on_execution_end,
            SequenceFlowTakeEvent: self._on_execution_take,
            ProcessStartEvent: self._on_process_start,
            ProcessEndEvent: self._on_process_end,
        }

    @staticmethod
    def _dispatch(handlers: dict, event_name: str, delegate) -> bool:
        handler = handlers.get(event_name)
        if handler is None:
            print(f"[events] Ignoring unknown event '{event_name}'")
            return False
        handler(delegate)
        return True

    def handle_task_event(self, event: TaskEvent) -> bool:
        task = event.task
        print(f"[events] Task Event - Type: {event.event_name}, Task: {task.name}, ID: {task.id}")
        return self._dispatch(self._task_handlers, event.event_name, task)

    def handle_execution_event(self, event: ExecutionEvent) -> bool:
        execution = event.execution
        print(f"[events] Execution Event - Type: {event.event_name}, "
              f"Activity: {execution.current_activity_id}, ProcessInstance: {execution.process_instance_id}")
        return self._dispatch(self._execution_handlers, event.event_name, execution)

    def handle_process_instance_event(self, event: ProcessInstanceEvent) -> bool:
        print(f"[events] Process Instance Event - Type: {event.event_name}, "
              f"ProcessInstance: {event.process_instance_id}, Definition: {event.process_definition_key}")
        return self._dispatch(self._process_handlers, event.event_name, event.execution)

    def notify(self, delegate) -> bool:
        """Listener-style entry point: the delegate carries its own event name."""
        if isinstance(delegate, DelegateTask):
            return self.handle_task_event(TaskEvent(delegate.event_name, delegate))
        return self.handle_execution_event(ExecutionEvent(delegate.event_name, delegate))

    def publish(self, event: DelegateEvent) -> bool:
        handler = self._typed_handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Unsupported event type: {type(event).__name__}")
        print(f"[events] {type(event).__name__} received")
        handler(event.delegate)
        return True

    # -- task handlers --------------------------------------------------------

    def _on_task_create(self, task: DelegateTask):
        self.audit.log_task_creation(task.id, task.name, task.process_instance_id)
        now = self.clock()

        priority = task.get_variable("priority")
        if task.due_date is None and isinstance(priority, str) and priority.lower() in HIGH_PRIORITY:
            task.set_due_date(now + timedelta(days=1))
            print(f"[events] Set due date for high priority task: {task.id}")

        department = task.get_variable("department")
        if department and task.assignee is None:
            assignee = DEPARTMENT_ASSIGNEES.get(str(department).lower(), DEFAULT_ASSIGNEE)
            task.set_assignee(assignee)
            print(f"[events] Auto-assigned task {task.id} to {assignee}")

        task.set_variable("createdDate", now)
        task.set_variable("taskStatus", "CREATED")

    def _on_task_assignment(self, task: DelegateTask):
        if task.assignee is None:
            return

        self.notifications.send_task_assignment_notification(task.assignee, task)
        self.audit.log_task_assignment(task.id, task.assignee)

        task.set_variable("assignedDate", self.clock())
        task.set_variable("assignedBy", "system")
        task.set_variable("taskStatus", "ASSIGNED")

    def _on_task_complete(self, task: DelegateTask):
        now = self.clock()
        assigned = _as_datetime(task.get_variable("assignedDate"))
        if assigned is not None:
            hours = _millis_between(assigned, now) // (1000 * 60 * 60)
            task.set_variable("taskDurationHours", hours)
            print(f"[events] Task {task.id} completed in {hours} hours")

        self.audit.log_task_completion(task.id, task.assignee)

        owner = task.get_variable("processOwner")
        if owner:
            self.notifications.send_task_completion_notification(owner, task)

        self.archiver.archive(task)

        task.set_variable("completedDate", now)
        task.set_variable("taskStatus", "COMPLETED")

    def _on_task_delete(self, task: DelegateTask):
        reason = task.delete_reason
        self.audit.log_task_deletion(task.id, reason)

        if task.assignee is not None and reason != "completed":
            self.notifications.send_task_cancellation_notification(task.assignee, task, reason)

    # -- execution handlers ---------------------------------------------------

    def _on_execution_start(self, execution: DelegateExecution):
        activity_id = execution.current_activity_id
        if activity_id is None:
            # the process instance itself
            return

        self.audit.log_activity_start(execution.process_instance_id, activity_id,
                                      execution.current_activity_name)
        execution.set_variable(f"{activity_id}_startTime", self.clock())

        if activity_id == "approvalTask":
            self._on_approval_task_start(execution)
        elif activity_id == "reviewTask":
            self._on_review_task_start(execution)
        elif activity_id == "notificationTask":
            self._on_notification_task_start(execution)

    def _on_execution_end(self, execution: DelegateExecution):
        activity_id = execution.current_activity_id
        if activity_id is None:
            return

        now = self.clock()
        started = _as_datetime(execution.get_variable(f"{activity_id}_startTime"))
        if started is not None:
            duration = _millis_between(started, now)
            execution.set_variable(f"{activity_id}_duration", duration)
            print(f"[events] Activity {activity_id} completed in {duration} ms")

        self.audit.log_activity_end(execution.process_instance_id, activity_id,
                                    execution.current_activity_name)

        if activity_id == "approvalTask":
            self._on_approval_task_end(execution, now)

    def _on_execution_take(self, execution: DelegateExecution):
        transition_id = execution.current_transition_id
        self.audit.log_sequence_flow_taken(execution.process_instance_id, transition_id)

        if transition_id == "approvalRejected":
            count = int(execution.get_variable("rejectionCount") or 0) + 1
            execution.set_variable("rejectionCount", count)
            print(f"[events] Process {execution.process_instance_id} rejected {count} times")
        elif transition_id == "approvalApproved":
            execution.set_variable("approvalDate", self.clock())
            print(f"[events] Process {execution.process_instance_id} approved")
            self.notifications.send_approval_notification(execution.process_instance_id,
                                                          execution.get_variable("approver"))

    def _on_approval_task_start(self, execution: DelegateExecution):
        now = self.clock()
        execution.set_variable("approvalStartTime", now)
        execution.set_variable("approvalDeadline", now + timedelta(days=3))
        execution.set_variable("approvalLevel", 1)
        execution.set_variable("approvalStarted", True)
        print(f"[events] Approval process started for {execution.process_instance_id}")

    def _on_review_task_start(self, execution: DelegateExecution):
        execution.set_variable("reviewStarted", True)
        execution.set_variable("reviewerCount", 0)
        execution.set_variable("reviewDeadline", self.clock() + timedelta(days=2))
        print(f"[events] Review process started for {execution.process_instance_id}")

    def _on_notification_task_start(self, execution: DelegateExecution):
        execution.set_variable("notificationSent", False)
        execution.set_variable("notificationAttempts", 0)
        print(f"[events] Notification task started for {execution.process_instance_id}")

    def _on_approval_task_end(self, execution: DelegateExecution, now: datetime):
        started = _as_datetime(execution.get_variable("approvalStartTime"))
        if started is not None:
            execution.set_variable("approvalDuration", _millis_between(started, now))

        pid = execution.process_instance_id
        approver = execution.get_variable("approver")
        if execution.get_variable("approved") is True:
            execution.set_variable("finalApprovalDate", now)
            print(f"[events] Process {pid} finally approved by {approver}")
            self.notifications.send_final_approval_notification(pid, approver)
        else:
            print(f"[events] Process {pid} rejected by {approver}")
            self.notifications.send_rejection_notification(pid, approver)

    # -- process instance handlers -------------------------------------------

    def _on_process_start(self, execution: DelegateExecution):
        key = execution.process_definition_key
        self.audit.log_process_start(execution.process_instance_id, key)

        execution.set_variable("processStartTime", self.clock())
        execution.set_variable("processStatus", "RUNNING")
        execution.set_variable("rejectionCount", 0)

        self.notifications.send_process_start_notification(execution.process_instance_id, key)

    def _on_process_end(self, execution: DelegateExecution):
        key = execution.process_definition_key
        now = self.clock()

        started = _as_datetime(execution.get_variable("processStartTime"))
        if started is not None:
            duration = _millis_between(started, now)
            execution.set_variable("processDuration", duration)
            print(f"[events] Process {execution.process_instance_id} completed in {duration} ms")

        self.audit.log_process_end(execution.process_instance_id, key)

        execution.set_variable("processEndTime", now)
        execution.set_variable("processStatus", "COMPLETED")

        self.notifications.send_process_end_notification(execution.process_instance_id, key)


# -- engine hook payloads -------------------------------------------------------

def delegate_from_payload(payload):
    """Build the delegate described by an ``EngineEventPayload``."""
    variables = from_engine_variables(payload.variables)

    if payload.kind == "task":
        if payload.task is None:
            raise ValueError("Task event without task data")
        t = payload.task
        due = _as_datetime(t.due) if t.due else None
        return DelegateTask(
            id=t.id, name=t.name, assignee=t.assignee, due_date=due, priority=t.priority,
            process_instance_id=t.processInstanceId, process_definition_id=t.processDefinitionId,
            delete_reason=t.deleteReason, event_name=payload.eventName, variables=variables,
        )

    e = payload.execution
    if payload.kind == "process":
        pid = payload.processInstanceId or (e.processInstanceId if e else None)
        definition = (e.processDefinitionId if e else None) or payload.processDefinitionKey
        return DelegateExecution(
            id=e.id if e else pid, process_instance_id=pid, process_definition_id=definition,
            business_key=e.businessKey if e else None, event_name=payload.eventName, variables=variables,
        )

    if e is None:
        raise ValueError("Execution event without execution data")
    return DelegateExecution(
        id=e.id, process_instance_id=e.processInstanceId, process_definition_id=e.processDefinitionId,
        current_activity_id=e.currentActivityId, current_activity_name=e.currentActivityName,
        current_transition_id=e.currentTransitionId, business_key=e.businessKey,
        event_name=payload.eventName, variables=variables,
    )


def dispatch_payload(subscriber: CamundaEventSubscriber, payload):
    """Run the subscriber for one hook payload; returns ``(handled, delegate)``."""
    delegate = delegate_from_payload(payload)
    if payload.kind == "process":
        event = ProcessInstanceEvent(payload.eventName, delegate.process_instance_id,
                                     delegate.process_definition_key, execution=delegate)
        return subscriber.handle_process_instance_event(event), delegate
    return subscriber.notify(delegate), delegate


def sync_changes(engine, delegate) -> bool:
    """Push what the handlers changed back to the engine. Failures are reported, not raised."""
    pid = delegate.process_instance_id
    try:
        if delegate.changed and pid:
            print(f"[Camunda Sync] Updating {len(delegate.changed)} variables on {pid}")
            engine.modify_variables(pid, delegate.changed)

        task_changes = getattr(delegate, "task_changes", None) or {}
        if "assignee" in task_changes:
            engine.set_assignee(delegate.id, task_changes["assignee"])
        if "due" in task_changes:
            engine.update_task(delegate.id, {"due": task_changes["due"]})
        return True
    except (EngineError, requests.RequestException) as e:
        print(f"Warning: Failed to sync with Camunda: {e}", file=sys.stderr)
        return False
