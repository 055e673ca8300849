"""Configuration loader for azdo-envmanager."""
import os
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .models import Configuration
from .preferences import get_preference

logger = logging.getLogger(__name__)

# Environment variable -> key in the azure_devops section
ENV_OVERRIDES = {
    "AZURE_DEVOPS_ORG_URL": "organization_url",
    "AZURE_DEVOPS_PAT": "personal_access_token",
    "AZURE_DEVOPS_PROJECT": "project_name",
}

REQUIRED_KEYS = ("organization_url", "personal_access_token", "project_name")


class ConfigError(Exception):
    """Configuration is missing or invalid."""
    pass


def default_config_path() -> Path:
    """Default config location, resolved against the current home directory."""
    return Path.home() / ".config" / "azdo-envmanager" / "config.yml"


def _get_config_path() -> str:
    """
    Resolve the config file path.

    Priority order:
    1. User preference (``envmanager config set-path``)
    2. Default location: ~/.config/azdo-envmanager/config.yml

    Raises:
        FileNotFoundError: If no config file exists in either location
    """
    config_path_pref = get_preference("config_path")
    if config_path_pref:
        config_path = Path(config_path_pref)
        if config_path.exists():
            logger.info(f"Using config from preference: {config_path}")
            return str(config_path)
        logger.warning(f"Config path from preference doesn't exist: {config_path}")

    default_config = default_config_path()
    if default_config.exists():
        logger.info(f"Using default config location: {default_config}")
        return str(default_config)

    raise FileNotFoundError(
        "Configuration file not found. Set up azdo-envmanager using one of these methods:\n\n"
        "1. Create the default config file:\n"
        f"   mkdir -p {default_config.parent}\n"
        f"   $EDITOR {default_config}\n\n"
        "2. Point to an existing config file:\n"
        "   envmanager config set-path /path/to/config.yml\n\n"
        "3. Export the environment variables:\n"
        "   " + ", ".join(ENV_OVERRIDES) + "\n"
    )


def _read_config_file(config_path: str) -> Dict[str, Any]:
    try:
        with open(config_path, 'r') as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML config at {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file at {config_path}: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file at {config_path} must contain a mapping")
    return raw


def load_config(config_path: Optional[str] = None) -> Configuration:
    """
    Load and validate the Azure DevOps configuration.

    Values come from the YAML file's ``azure_devops`` section, with the
    AZURE_DEVOPS_* environment variables taking precedence. The file may be
    absent when the environment supplies every required value.

    Args:
        config_path: Explicit config file, skipping preference/default lookup

    Returns:
        Immutable Configuration

    Raises:
        ConfigError: If the file is unreadable or a required value is missing
    """
    raw: Dict[str, Any] = {}
    source = "environment"
    missing_file_help = ""

    try:
        path = config_path or _get_config_path()
    except FileNotFoundError as e:
        path = None
        missing_file_help = str(e)

    if path:
        if not os.path.isfile(path):
            raise ConfigError(f"Configuration file not found at: {path}")
        raw = _read_config_file(path)
        source = path

    section = raw.get("azure_devops") or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'azure_devops' section in {source} must be a mapping")

    values = {key: section.get(key) for key in REQUIRED_KEYS}
    for env_name, key in ENV_OVERRIDES.items():
        env_value = os.getenv(env_name)
        if env_value:
            logger.debug(f"Using {env_name} from environment")
            values[key] = env_value

    missing = [key for key in REQUIRED_KEYS if not str(values[key] or "").strip()]
    if missing:
        message = (
            f"Missing required Azure DevOps settings: {', '.join(missing)}\n"
            "Required format:\n"
            "azure_devops:\n"
            "  organization_url: https://dev.azure.com/your-org\n"
            "  personal_access_token: <PAT>\n"
            "  project_name: YourProject"
        )
        if missing_file_help:
            message = f"{message}\n\n{missing_file_help}"
        raise ConfigError(message)

    display = raw.get("display") or {}
    if not isinstance(display, dict):
        raise ConfigError(f"'display' section in {source} must be a mapping")
    expected_fields = display.get("expected_fields") or []
    if not isinstance(expected_fields, list):
        raise ConfigError("'display.expected_fields' must be a list of variable names")

    config = Configuration(
        organization_url=str(values["organization_url"]).strip().rstrip("/"),
        personal_access_token=str(values["personal_access_token"]).strip(),
        project_name=str(values["project_name"]).strip(),
        expected_fields=tuple(str(name) for name in expected_fields),
    )

    logger.info(f"Configuration loaded successfully from {source}")
    logger.debug(f"Using organization: {config.organization_url}")
    logger.debug(f"Using project: {config.project_name}")

    return config
