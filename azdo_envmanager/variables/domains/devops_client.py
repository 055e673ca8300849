"""Azure DevOps REST client wrapper.

This module is the only place that builds Azure DevOps URLs, sends HTTP
requests and interprets error payloads. It raises on failure; the service
layer decides what a failure means to its caller.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from .models import Configuration

logger = logging.getLogger(__name__)

API_VERSION = "7.1"


class DevOpsAPIError(RuntimeError):
    """Azure DevOps answered with a non-2xx status."""

    def __init__(self, status_code: int, method: str, path: str, message: str):
        super().__init__(f"Azure DevOps API error {status_code} {method} {path}: {message}")
        self.status_code = status_code


class AzureDevOpsClient:
    """Thin wrapper around an ``httpx.Client`` bound to one organization and project."""

    def __init__(self, config: Configuration, transport: Optional[httpx.BaseTransport] = None):
        self._organization_url = config.organization_url.rstrip("/")
        self._project = config.project_name
        # One session for the client's lifetime, shared by concurrent callers
        self._client = httpx.Client(
            auth=("", config.personal_access_token),
            headers={"Accept": "application/json"},
            transport=transport,
        )

    @property
    def client(self) -> httpx.Client:
        return self._client

    @property
    def project(self) -> str:
        return self._project

    def close(self) -> None:
        """Release the connection pool. Safe to call more than once."""
        if not self._client.is_closed:
            self._client.close()

    def __enter__(self) -> "AzureDevOpsClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _project_path(self, path: str) -> str:
        return f"/{self._project}/_apis/{path}"

    def _request(self, method: str, path: str, *, json_body: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self._organization_url}{path}"
        response = self.client.request(method, url, params={"api-version": API_VERSION}, json=json_body)
        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {"message": response.text}
            message = payload.get("message", payload) if isinstance(payload, dict) else payload
            raise DevOpsAPIError(response.status_code, method, path, str(message))
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # Build definitions

    def list_build_definitions(self) -> List[Dict[str, Any]]:
        data = self._request("GET", self._project_path("build/definitions"))
        return data["value"]

    # Variable groups

    def list_variable_groups(self) -> List[Dict[str, Any]]:
        data = self._request("GET", self._project_path("distributedtask/variablegroups"))
        return data["value"]

    def get_variable_group(self, group_id: int) -> Optional[Dict[str, Any]]:
        """Return the raw group, or None when the project has no group with that id."""
        try:
            return self._request("GET", self._project_path(f"distributedtask/variablegroups/{group_id}"))
        except DevOpsAPIError as e:
            if e.status_code == 404:
                return None
            raise

    def update_variable_group(self, group_id: int, body: Dict[str, Any]) -> Dict[str, Any]:
        """Replace the whole group. Azure DevOps has no per-variable update."""
        return self._request("PUT", f"/_apis/distributedtask/variablegroups/{group_id}", json_body=body)

    def create_variable_group(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/_apis/distributedtask/variablegroups", json_body=body)

    # Pipeline runs

    def run_pipeline(self, pipeline_id: int, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", self._project_path(f"pipelines/{pipeline_id}/runs"), json_body=body)
