import requests
from requests.auth import HTTPBasicAuth

from workflow_api import config
from workflow_api.variables import format_engine_date, from_engine_value, from_engine_variables, to_engine_variables

# fields accepted by PUT /task/{id}
TASK_UPDATE_FIELDS = (
    "name", "description", "assignee", "owner", "delegationState", "due",
    "followUp", "priority", "parentTaskId", "caseInstanceId", "tenantId",
)


class EngineError(Exception):
    """Non-2xx answer from the engine REST API."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _error_message(r) -> str:
    try:
        body = r.json()
    except ValueError:
        return r.text or f"HTTP {r.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return body["message"]
    return r.text or f"HTTP {r.status_code}"


class EngineClient:
    def __init__(self, base_url: str = None, auth=None, session=None, timeout: float = None):
        self.base_url = (base_url or config.ENGINE_REST).rstrip("/")
        if auth is None and config.CAMUNDA_USER:
            auth = HTTPBasicAuth(config.CAMUNDA_USER, config.CAMUNDA_PASS or "")
        self.auth = auth
        self.session = session or requests.Session()
        self.timeout = timeout or config.ENGINE_TIMEOUT_SEC

    def _request(self, method: str, path: str, **kwargs):
        r = self.session.request(
            method, f"{self.base_url}{path}", auth=self.auth, timeout=self.timeout, **kwargs
        )
        if r.status_code >= 400:
            raise EngineError(r.status_code, _error_message(r))
        if r.status_code == 204 or not r.content:
            return None
        return r.json()

    def _get_or_none(self, path: str, **kwargs):
        try:
            return self._request("GET", path, **kwargs)
        except EngineError as e:
            if e.status_code == 404:
                return None
            raise

    # -- repository ---------------------------------------------------------

    def deploy(self, name: str, resource_name: str, bpmn_xml: str, tenant_id: str = None) -> dict:
        data = {
            "deployment-name": name,
            "enable-duplicate-filtering": "false",
            "deploy-changed-only": "false",
        }
        if tenant_id:
            data["tenant-id"] = tenant_id
        files = {
            resource_name: (resource_name, bpmn_xml.encode("utf-8"), "application/octet-stream")
        }
        return self._request("POST", "/deployment/create", data=data, files=files)

    def process_definitions(self, deployment_id: str) -> list:
        return self._request("GET", "/process-definition", params={"deploymentId": deployment_id}) or []

    # -- runtime ------------------------------------------------------------

    def start_process_instance(self, definition_id: str, variables: dict = None, business_key: str = None) -> dict:
        payload = {"variables": to_engine_variables(variables)}
        if business_key:
            payload["businessKey"] = business_key
        return self._request("POST", f"/process-definition/{definition_id}/start", json=payload)

    def start_process_by_key(self, key: str, variables: dict = None, business_key: str = None) -> dict:
        payload = {"variables": to_engine_variables(variables)}
        if business_key:
            payload["businessKey"] = business_key
        return self._request("POST", f"/process-definition/key/{key}/start", json=payload)

    def get_process_instance(self, process_instance_id: str):
        return self._get_or_none(f"/process-instance/{process_instance_id}")

    def get_historic_process_instance(self, process_instance_id: str):
        return self._get_or_none(f"/history/process-instance/{process_instance_id}")

    def get_variables(self, process_instance_id: str) -> dict:
        typed = self._request(
            "GET",
            f"/process-instance/{process_instance_id}/variables",
            params={"deserializeValues": "false"},
        )
        return from_engine_variables(typed or {})

    def modify_variables(self, process_instance_id: str, variables: dict):
        payload = {"modifications": to_engine_variables(variables)}
        return self._request("POST", f"/process-instance/{process_instance_id}/variables", json=payload)

    def get_historic_variables(self, process_instance_id: str) -> dict:
        rows = self._request(
            "GET",
            "/history/variable-instance",
            params={"processInstanceId": process_instance_id, "deserializeValues": "false"},
        ) or []
        return {row["name"]: from_engine_value(row) for row in rows if row.get("name")}

    # -- tasks --------------------------------------------------------------

    def get_tasks(self, process_instance_id: str, active: bool = True) -> list:
        params = {"processInstanceId": process_instance_id}
        if active:
            params["active"] = "true"
        return self._request("GET", "/task", params=params) or []

    def get_task(self, task_id: str):
        return self._get_or_none(f"/task/{task_id}")

    def set_assignee(self, task_id: str, user_id: str):
        return self._request("POST", f"/task/{task_id}/assignee", json={"userId": user_id})

    def update_task(self, task_id: str, fields: dict):
        """PUT replaces the whole task, so the current state is read first."""
        current = self.get_task(task_id)
        if current is None:
            raise EngineError(404, f"Cannot find task with id {task_id}")

        body = {k: current.get(k) for k in TASK_UPDATE_FIELDS if k in current}
        for k, v in fields.items():
            body[k] = format_engine_date(v) if k in ("due", "followUp") and hasattr(v, "year") else v
        return self._request("PUT", f"/task/{task_id}", json=body)

    def complete_task(self, task_id: str, variables: dict = None):
        payload = {"variables": to_engine_variables(variables)}
        return self._request("POST", f"/task/{task_id}/complete", json=payload)
