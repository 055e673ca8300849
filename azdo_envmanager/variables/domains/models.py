"""Domain models for variable libraries and pipelines."""
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Tuple

# Shown in place of any value Azure DevOps flags as secret
SECRET_MARKER = "********"


@dataclass(frozen=True)
class Configuration:
    """Connection settings, loaded once per process."""
    organization_url: str
    personal_access_token: str = field(repr=False)
    project_name: str
    expected_fields: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PipelineDefinition:
    """A build pipeline definition."""
    id: int
    name: str
    path: str
    type: str


@dataclass
class VariableGroup:
    """A variable library with secret values already masked."""
    id: int
    name: str
    variables: Dict[str, str] = field(default_factory=dict)
    secret_names: FrozenSet[str] = frozenset()
    description: str = ""

    def is_secret(self, name: str) -> bool:
        return name in self.secret_names


@dataclass(frozen=True)
class VariableEntry:
    """One variable of one library, used for the flattened listing."""
    name: str
    value: str
    library_name: str
