"""Variable library and pipeline operations against Azure DevOps.

Every operation catches transport, HTTP and payload errors, logs them with
the operation's context, and returns an empty/False/None result instead of
raising. Callers turn those results into user-facing messages.

Variable writes are read-modify-write of the whole group with no version
check: two concurrent writes to the same group can lose one of the edits.
Callers that need correctness under concurrency must serialize writes per
group id.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx

from ..domains.devops_client import AzureDevOpsClient, DevOpsAPIError
from ..domains.models import (
    SECRET_MARKER,
    Configuration,
    PipelineDefinition,
    VariableEntry,
    VariableGroup,
)
from .templates import merge_template_variables

logger = logging.getLogger(__name__)

# Failures converted into empty results at the service boundary
REMOTE_ERRORS = (DevOpsAPIError, httpx.HTTPError, ValueError, KeyError, TypeError)


def _to_pipeline(raw: Dict[str, Any]) -> PipelineDefinition:
    return PipelineDefinition(
        id=int(raw.get("id") or 0),
        name=raw.get("name") or "",
        path=raw.get("path") or "",
        type=raw.get("type") or "",
    )


def _to_variable_group(raw: Dict[str, Any]) -> VariableGroup:
    variables = {}
    secret_names = set()
    for name, variable in (raw.get("variables") or {}).items():
        variable = variable or {}
        if variable.get("isSecret"):
            secret_names.add(name)
            variables[name] = SECRET_MARKER
        else:
            variables[name] = variable.get("value") or ""
    return VariableGroup(
        id=int(raw["id"]),
        name=raw.get("name") or "",
        variables=variables,
        secret_names=frozenset(secret_names),
        description=raw.get("description") or "",
    )


def flatten_variables(groups: List[VariableGroup]) -> List[VariableEntry]:
    """One entry per variable per library, in library order."""
    return [
        VariableEntry(name=name, value=value, library_name=group.name)
        for group in groups
        for name, value in group.variables.items()
    ]


class EnvManagerService:
    """Remote client for variable libraries and pipelines of one Azure DevOps project."""

    def __init__(self, config: Configuration, transport: Optional[httpx.BaseTransport] = None):
        self._config = config
        self._client = AzureDevOpsClient(config, transport=transport)

    @property
    def config(self) -> Configuration:
        return self._config

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "EnvManagerService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _project_reference(self, name: str, description: str) -> Dict[str, Any]:
        return {
            "name": name,
            "description": description,
            "projectReference": {"name": self._config.project_name},
        }

    def _group_body(self, raw: Dict[str, Any], variables: Dict[str, Any]) -> Dict[str, Any]:
        """Write payload for ``raw`` with its variable map replaced."""
        name = raw.get("name") or ""
        description = raw.get("description") or ""
        return {
            "name": name,
            "description": description,
            "type": raw.get("type") or "Vsts",
            "providerData": raw.get("providerData"),
            "variables": variables,
            "variableGroupProjectReferences": (
                raw.get("variableGroupProjectReferences")
                or [self._project_reference(name, description)]
            ),
        }

    # Reads

    def list_pipelines(self) -> List[PipelineDefinition]:
        """List build pipeline definitions, or [] if the fetch fails."""
        try:
            return [_to_pipeline(raw) for raw in self._client.list_build_definitions()]
        except REMOTE_ERRORS as e:
            logger.error(f"Error fetching pipelines: {e}")
            return []

    def list_variable_groups(self) -> List[VariableGroup]:
        """List variable libraries with secret values masked, or [] if the fetch fails."""
        try:
            return [_to_variable_group(raw) for raw in self._client.list_variable_groups()]
        except REMOTE_ERRORS as e:
            logger.error(f"Error fetching variable libraries: {e}")
            return []

    def list_all_variables(self) -> List[VariableEntry]:
        """Flatten every library into (name, value, library) entries."""
        return flatten_variables(self.list_variable_groups())

    def get_variable_group(self, group_id: int) -> Optional[VariableGroup]:
        """Fetch one library with secret values masked."""
        try:
            raw = self._client.get_variable_group(group_id)
            if raw is None:
                logger.warning(f"Variable library {group_id} not found")
                return None
            return _to_variable_group(raw)
        except REMOTE_ERRORS as e:
            logger.error(f"Error fetching variable library {group_id}: {e}")
            return None

    def get_variable(self, group_id: int, name: str) -> Optional[str]:
        """
        Get one variable's value.

        Returns:
            The value (SECRET_MARKER for secrets), or None if the library
            or the variable is missing or the fetch fails
        """
        group = self.get_variable_group(group_id)
        if group is None:
            return None
        if name not in group.variables:
            logger.info(f"Variable '{name}' not found in library {group_id}")
            return None
        return group.variables[name]

    # Writes

    def _write_variable(self, group_id: int, name: str, value: str, *, allow_overwrite: bool) -> bool:
        operation = "update" if allow_overwrite else "add"
        try:
            raw = self._client.get_variable_group(group_id)
            if raw is None:
                logger.warning(f"Cannot {operation} '{name}': variable library {group_id} not found")
                return False

            variables = dict(raw.get("variables") or {})
            existing = variables.get(name)
            if existing is not None and not allow_overwrite:
                logger.warning(f"Variable '{name}' already exists in library {group_id}")
                return False

            if existing is not None:
                variables[name] = {**existing, "value": value}
            else:
                variables[name] = {"value": value, "isSecret": False}

            self._client.update_variable_group(group_id, self._group_body(raw, variables))
            logger.info(f"Variable '{name}' {operation}d in library {group_id}")
            return True
        except REMOTE_ERRORS as e:
            logger.error(f"Error during {operation} of variable '{name}' in library {group_id}: {e}")
            return False

    def update_variable(self, group_id: int, name: str, value: str) -> bool:
        """
        Set a variable, inserting it as non-secret when absent.

        The whole group is fetched and written back; concurrent writers to
        the same group follow last-writer-wins.
        """
        return self._write_variable(group_id, name, value, allow_overwrite=True)

    def add_variable(self, group_id: int, name: str, value: str) -> bool:
        """Add a new non-secret variable. Returns False if the name already exists."""
        return self._write_variable(group_id, name, value, allow_overwrite=False)

    def create_group_from_template(
        self,
        template_group_id: int,
        new_group_name: str,
        overrides: Optional[Mapping[str, Optional[str]]] = None,
    ) -> Optional[int]:
        """
        Create a new library with the template's keys and selective overrides.

        The template library itself is never written.

        Returns:
            Id of the new library, or None on failure
        """
        new_group_name = (new_group_name or "").strip()
        if not new_group_name:
            logger.warning("Cannot create variable library: name is required")
            return None

        try:
            template = self._client.get_variable_group(template_group_id)
            if template is None:
                logger.warning(f"Template variable library {template_group_id} not found")
                return None

            variables = merge_template_variables(template.get("variables") or {}, overrides)
            description = f"Created from template '{template.get('name', template_group_id)}'"
            body = {
                "name": new_group_name,
                "description": description,
                "type": template.get("type") or "Vsts",
                "variables": variables,
                "variableGroupProjectReferences": [self._project_reference(new_group_name, description)],
            }
            created = self._client.create_variable_group(body)
            new_id = int(created["id"])
        except REMOTE_ERRORS as e:
            logger.error(f"Error creating variable library '{new_group_name}' from template {template_group_id}: {e}")
            return None

        logger.info(f"Created variable library '{new_group_name}' ({new_id}) from template {template_group_id}")
        return new_id

    def queue_pipeline_run(self, pipeline_id: int, branch: Optional[str] = None) -> Optional[int]:
        """
        Queue a run of a pipeline.

        Args:
            pipeline_id: Pipeline definition id
            branch: Branch name or full ref; the pipeline's default branch when omitted

        Returns:
            Id of the new run, or None on failure
        """
        # Azure DevOps rejects run requests without these sections, even empty
        resources: Dict[str, Any] = {}
        if branch:
            ref_name = branch if branch.startswith("refs/") else f"refs/heads/{branch}"
            resources["repositories"] = {"self": {"refName": ref_name}}
        body = {"resources": resources, "templateParameters": {}}

        try:
            run = self._client.run_pipeline(pipeline_id, body)
            run_id = int(run["id"])
        except REMOTE_ERRORS as e:
            logger.error(f"Error queueing run for pipeline {pipeline_id}: {e}")
            return None

        logger.info(f"Queued run {run_id} for pipeline {pipeline_id}")
        return run_id
