"""Input validation for CLI arguments."""
import re
import sys

# Azure DevOps variable names: letters, digits, '.', '_' and '-'
VARIABLE_NAME_PATTERN = r'^[A-Za-z0-9._-]+$'


def _usage_error(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(2)


def parse_id(value: str, kind: str = "library") -> int:
    """
    Parse a numeric Azure DevOps id.

    Raises:
        SystemExit with code 2 if the value is not a positive integer
    """
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        parsed = 0
    if parsed <= 0:
        _usage_error(f"Invalid {kind} id '{value}': expected a positive integer")
    return parsed


def validate_variable_name(name: str) -> None:
    """
    Validate a variable name.

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not name:
        _usage_error("Variable name cannot be empty")

    if not re.match(VARIABLE_NAME_PATTERN, name):
        print(f"Error: Invalid variable name '{name}'", file=sys.stderr)
        print("\nAllowed characters: letters, numbers, dots (.), underscores (_), hyphens (-)", file=sys.stderr)
        print("\nExamples of valid names:", file=sys.stderr)
        print("  ✓ app1Port", file=sys.stderr)
        print("  ✓ addressFrontIMG", file=sys.stderr)
        print("  ✓ db.connection-timeout", file=sys.stderr)
        sys.exit(2)


def validate_library_name(name: str) -> None:
    """A new variable library needs a non-blank name."""
    if not name or not name.strip():
        _usage_error("Variable library name cannot be empty")


def parse_override(item: str) -> tuple:
    """Split a ``KEY=VALUE`` override; the value may itself contain '='."""
    name, sep, value = item.partition("=")
    if not sep:
        _usage_error(f"Invalid override '{item}': expected KEY=VALUE")
    validate_variable_name(name)
    return name, value
