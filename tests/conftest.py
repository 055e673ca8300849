"""Shared fixtures: isolated home directory and an in-memory Azure DevOps project."""
import copy
import json
import re
from pathlib import Path

import httpx
import pytest

from azdo_envmanager.variables.domains import preferences
from azdo_envmanager.variables.domains.models import Configuration
from azdo_envmanager.variables.workflows.envmanager_service import EnvManagerService

ORG_URL = "https://dev.azure.com/contoso"
PROJECT = "Platform"


class FakeAzureDevOps:
    """Serves the subset of the Azure DevOps REST API the service uses.

    Secret values are stored but returned as null, like the real API.
    """

    def __init__(self):
        self.groups = {}
        self.pipelines = {}
        self.requests = []
        self.fail_with = None
        self._next_group_id = 100
        self._next_run_id = 1000

    def add_group(self, group_id, name, variables, secrets=()):
        self.groups[group_id] = {
            "id": group_id,
            "name": name,
            "description": "",
            "type": "Vsts",
            "variables": {
                key: {"value": value, "isSecret": key in secrets}
                for key, value in variables.items()
            },
            "variableGroupProjectReferences": [
                {"name": name, "description": "", "projectReference": {"id": "p-1", "name": PROJECT}}
            ],
        }
        return self.groups[group_id]

    def add_pipeline(self, pipeline_id, name, path="\\", type_="build"):
        self.pipelines[pipeline_id] = {"id": pipeline_id, "name": name, "path": path, "type": type_}

    def stored_values(self, group_id):
        """Real values, secrets included, as held remotely."""
        return {k: v["value"] for k, v in self.groups[group_id]["variables"].items()}

    def _public(self, group):
        group = copy.deepcopy(group)
        for variable in group["variables"].values():
            if variable.get("isSecret"):
                variable["value"] = None
        return group

    def _body(self, request):
        return json.loads(request.content) if request.content else None

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = self._body(request)
        self.requests.append((request.method, request.url.path, body))

        if self.fail_with:
            return httpx.Response(self.fail_with, json={"message": "simulated failure"})

        path = request.url.path
        project_prefix = f"/contoso/{PROJECT}/_apis/"
        org_prefix = "/contoso/_apis/"

        if request.method == "GET" and path == project_prefix + "build/definitions":
            return httpx.Response(200, json={"count": len(self.pipelines), "value": list(self.pipelines.values())})

        if request.method == "GET" and path == project_prefix + "distributedtask/variablegroups":
            groups = [self._public(g) for g in self.groups.values()]
            return httpx.Response(200, json={"count": len(groups), "value": groups})

        match = re.fullmatch(re.escape(project_prefix) + r"distributedtask/variablegroups/(\d+)", path)
        if request.method == "GET" and match:
            group = self.groups.get(int(match.group(1)))
            if group is None:
                return httpx.Response(404, json={"message": "Variable group not found"})
            return httpx.Response(200, json=self._public(group))

        match = re.fullmatch(re.escape(org_prefix) + r"distributedtask/variablegroups/(\d+)", path)
        if request.method == "PUT" and match:
            group_id = int(match.group(1))
            current = self.groups.get(group_id)
            if current is None:
                return httpx.Response(404, json={"message": "Variable group not found"})
            variables = {}
            for key, variable in body["variables"].items():
                value = variable.get("value")
                if variable.get("isSecret") and value is None and key in current["variables"]:
                    value = current["variables"][key]["value"]
                variables[key] = {"value": value, "isSecret": bool(variable.get("isSecret"))}
            current.update({k: v for k, v in body.items() if k != "variables"})
            current["variables"] = variables
            return httpx.Response(200, json=self._public(current))

        if request.method == "POST" and path == org_prefix + "distributedtask/variablegroups":
            group_id = self._next_group_id
            self._next_group_id += 1
            self.groups[group_id] = {**body, "id": group_id}
            return httpx.Response(200, json=self._public(self.groups[group_id]))

        match = re.fullmatch(re.escape(project_prefix) + r"pipelines/(\d+)/runs", path)
        if request.method == "POST" and match:
            if body is None or "resources" not in body or "templateParameters" not in body:
                return httpx.Response(400, json={"message": "resources and templateParameters are required"})
            if int(match.group(1)) not in self.pipelines:
                return httpx.Response(404, json={"message": "Pipeline not found"})
            run_id = self._next_run_id
            self._next_run_id += 1
            return httpx.Response(200, json={"id": run_id, "state": "inProgress"})

        return httpx.Response(404, json={"message": f"No route for {request.method} {path}"})


@pytest.fixture
def config():
    return Configuration(
        organization_url=ORG_URL,
        personal_access_token="test-pat",
        project_name=PROJECT,
        expected_fields=("app1Port", "domena"),
    )


@pytest.fixture
def fake_devops():
    """In-memory project with two libraries and one pipeline."""
    fake = FakeAzureDevOps()
    fake.add_group(5, "template", {"app1Port": "8080", "domena": "example.com"})
    fake.add_group(7, "production", {"app1Port": "80", "dbPassword": "hunter2"}, secrets={"dbPassword"})
    fake.add_pipeline(1, "deploy-app", path="\\apps")
    return fake


@pytest.fixture
def service(config, fake_devops):
    with EnvManagerService(config, transport=httpx.MockTransport(fake_devops.handler)) as svc:
        yield svc


@pytest.fixture
def temp_home(tmp_path, monkeypatch):
    """Temporary home directory with preferences redirected into it."""
    fake_home = tmp_path / "home"
    fake_home.mkdir()
    monkeypatch.setenv("HOME", str(fake_home))
    monkeypatch.setattr(Path, "home", lambda: fake_home)

    fake_config_dir = fake_home / ".config" / "azdo-envmanager"
    monkeypatch.setattr(preferences, "PREFERENCES_DIR", fake_config_dir)
    monkeypatch.setattr(preferences, "PREFERENCES_FILE", fake_config_dir / "preferences.json")

    for name in ("AZURE_DEVOPS_ORG_URL", "AZURE_DEVOPS_PAT", "AZURE_DEVOPS_PROJECT"):
        monkeypatch.delenv(name, raising=False)

    return fake_home
