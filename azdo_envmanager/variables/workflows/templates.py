"""Building a new variable library from a template library."""
import logging
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)


def merge_template_variables(
    template_variables: Mapping[str, Dict[str, Any]],
    overrides: Optional[Mapping[str, Optional[str]]] = None,
) -> Dict[str, Dict[str, Any]]:
    """
    Merge user overrides into a template's raw variable map.

    Args:
        template_variables: Raw Azure DevOps map, name -> {"value", "isSecret"}
        overrides: name -> replacement value

    Returns:
        A new raw variable map with exactly the template's keys. A key takes
        its override when one is given and non-empty, otherwise the template
        value. The secret flag always comes from the template. Overrides for
        keys the template does not have are dropped.
    """
    overrides = overrides or {}
    merged: Dict[str, Dict[str, Any]] = {}

    for name, variable in template_variables.items():
        variable = variable or {}
        override = overrides.get(name)
        merged[name] = {
            "value": override if override else variable.get("value"),
            "isSecret": bool(variable.get("isSecret", False)),
        }

    ignored = sorted(set(overrides) - set(template_variables))
    if ignored:
        logger.debug(f"Ignoring overrides not present in template: {', '.join(ignored)}")

    return merged
