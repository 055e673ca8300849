"""CLI entrypoint for azdo-envmanager."""
import sys
import argparse
import logging
from pathlib import Path

from azdo_envmanager import __version__
from azdo_envmanager.variables.domains.config_loader import ConfigError, default_config_path, load_config
from azdo_envmanager.variables.workflows.envmanager_service import EnvManagerService

from .validators import (
    parse_id,
    parse_override,
    validate_library_name,
    validate_variable_name,
)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        stream=sys.stderr,
    )


def _open_service() -> EnvManagerService:
    """Load configuration and build the service, exiting 1 if configuration is missing."""
    try:
        config = load_config()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    return EnvManagerService(config)


def _fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def cmd_version(args):
    """Show version information."""
    print(f"azdo-envmanager {__version__}")


def cmd_config_set_path(args):
    """Set config file path preference."""
    from azdo_envmanager.variables.domains.preferences import set_preference

    config_path = Path(args.path).resolve()

    if not config_path.exists():
        _fail(f"Config file does not exist: {config_path}")

    if not config_path.is_file():
        _fail(f"Path is not a file: {config_path}")

    set_preference("config_path", str(config_path))
    print(f"Config path set to: {config_path}")


def cmd_config_show(args):
    """Show current config file path and where it came from."""
    from azdo_envmanager.variables.domains.preferences import get_preference

    config_path_pref = get_preference("config_path")
    if config_path_pref:
        config_path = Path(config_path_pref)
        source = "preference"
    else:
        config_path = default_config_path()
        source = "default"

    if config_path.exists():
        print(f"Config path: {config_path}")
    else:
        print(f"Config path (file not found): {config_path}")
    print(f"Source: {source}")


def cmd_config_clear(args):
    """Clear config path preference."""
    from azdo_envmanager.variables.domains.preferences import clear_preference

    clear_preference("config_path")
    print(f"Config path preference cleared. Will use default: {default_config_path()}")


def cmd_list_libraries(args):
    """List variable libraries."""
    with _open_service() as service:
        groups = service.list_variable_groups()

    if not groups:
        print("No variable libraries found (or the request failed).")
        return
    for group in groups:
        print(f"{group.id}\t{group.name}\t({len(group.variables)} variables)")


def cmd_list_variables(args):
    """List the variables of one library."""
    group_id = parse_id(args.library_id)
    with _open_service() as service:
        group = service.get_variable_group(group_id)

    if group is None:
        _fail(f"Variable library {group_id} not found or could not be fetched")
    print(f"Variables in '{group.name}' ({group.id}):")
    for name, value in sorted(group.variables.items()):
        print(f"  {name} = {value}")


def cmd_list_all_variables(args):
    """List every variable of every library."""
    with _open_service() as service:
        entries = service.list_all_variables()

    for entry in entries:
        print(f"{entry.library_name}\t{entry.name}\t{entry.value}")


def cmd_get_variable(args):
    """Print one variable's value."""
    group_id = parse_id(args.library_id)
    validate_variable_name(args.name)
    with _open_service() as service:
        value = service.get_variable(group_id, args.name)

    if value is None:
        _fail(f"Variable '{args.name}' not found in library {group_id}")
    print(value)


def cmd_update_variable(args):
    """Set a variable, creating it if needed."""
    group_id = parse_id(args.library_id)
    validate_variable_name(args.name)
    with _open_service() as service:
        updated = service.update_variable(group_id, args.name, args.value)

    if not updated:
        _fail(f"Failed to update '{args.name}' in library {group_id}")
    print(f"Success: '{args.name}' set in library {group_id}")


def cmd_add_variable(args):
    """Add a new variable to a library."""
    group_id = parse_id(args.library_id)
    validate_variable_name(args.name)
    with _open_service() as service:
        added = service.add_variable(group_id, args.name, args.value)
        already_exists = not added and service.get_variable(group_id, args.name) is not None

    if already_exists:
        _fail(f"Variable '{args.name}' already exists in library {group_id}. Use update-variable to change it.")
    if not added:
        _fail(f"Failed to add '{args.name}' to library {group_id}")
    print(f"Success: '{args.name}' added to library {group_id}")


def cmd_create_library(args):
    """Create a new library from a template library."""
    template_id = parse_id(args.template_id, kind="template library")
    validate_library_name(args.name)
    overrides = dict(parse_override(item) for item in args.overrides)

    with _open_service() as service:
        new_id = service.create_group_from_template(template_id, args.name, overrides)

    if new_id is None:
        _fail(f"Failed to create library '{args.name}' from template {template_id}")
    print(f"Success: created library '{args.name}' with id {new_id}")


def cmd_list_pipelines(args):
    """List pipeline definitions."""
    with _open_service() as service:
        pipelines = service.list_pipelines()

    if not pipelines:
        print("No pipelines found (or the request failed).")
        return
    for pipeline in pipelines:
        print(f"{pipeline.id}\t{pipeline.name}\t{pipeline.path}")


def cmd_trigger_pipeline(args):
    """Queue a pipeline run."""
    pipeline_id = parse_id(args.pipeline_id, kind="pipeline")
    with _open_service() as service:
        run_id = service.queue_pipeline_run(pipeline_id, branch=args.branch)

    if run_id is None:
        _fail(f"Failed to queue pipeline {pipeline_id}")
    print(f"Success: queued run {run_id} for pipeline {pipeline_id}")


def cmd_serve(args):
    """Run the web UI."""
    import uvicorn

    from azdo_envmanager.web.app import create_app

    try:
        config = load_config()
    except ConfigError as e:
        _fail(str(e))
    uvicorn.run(create_app(config), host=args.host, port=args.port)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="envmanager",
        description="Manage Azure DevOps variable libraries and pipelines",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit codes:
  0 - Success
  1 - Runtime error (missing configuration, request failed, not found, etc.)
  2 - Usage error (invalid arguments, ids or variable names)

Environment variables (override the config file):
  AZURE_DEVOPS_ORG_URL  - organization URL, e.g. https://dev.azure.com/contoso
  AZURE_DEVOPS_PAT      - personal access token
  AZURE_DEVOPS_PROJECT  - project name

Configuration:
  Default location: ~/.config/azdo-envmanager/config.yml
  Custom path: Set with 'envmanager config set-path <path>'
        """
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("version", help="Show version information")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command")
    set_path_parser = config_subparsers.add_parser("set-path", help="Set config file path")
    set_path_parser.add_argument("path", help="Path to config file")
    config_subparsers.add_parser("show", help="Show current config path")
    config_subparsers.add_parser("clear", help="Clear config path preference")

    subparsers.add_parser("list-libraries", help="List variable libraries")

    list_variables_parser = subparsers.add_parser("list-variables", help="List variables of a library")
    list_variables_parser.add_argument("library_id", help="Variable library id")

    subparsers.add_parser("list-all-variables", help="List variables of every library")

    get_parser = subparsers.add_parser("get-variable", help="Get a variable value")
    get_parser.add_argument("library_id", help="Variable library id")
    get_parser.add_argument("name", help="Variable name")

    update_parser = subparsers.add_parser(
        "update-variable",
        help="Set a variable (created if missing)",
        description="Set a variable. The whole library is read and written back; "
                    "do not run concurrent writes against the same library."
    )
    update_parser.add_argument("library_id", help="Variable library id")
    update_parser.add_argument("name", help="Variable name")
    update_parser.add_argument("value", help="New value")

    add_parser = subparsers.add_parser("add-variable", help="Add a new variable")
    add_parser.add_argument("library_id", help="Variable library id")
    add_parser.add_argument("name", help="Variable name")
    add_parser.add_argument("value", help="Value")

    create_parser = subparsers.add_parser(
        "create-library",
        help="Create a library from a template library",
        description="Copy every variable of the template library into a new library. "
                    "Values given with --set replace the template's value; empty values "
                    "and keys missing from the template are ignored."
    )
    create_parser.add_argument("template_id", help="Template variable library id")
    create_parser.add_argument("name", help="Name of the new library")
    create_parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a template value (repeatable)"
    )

    subparsers.add_parser("list-pipelines", help="List pipelines")

    trigger_parser = subparsers.add_parser("trigger-pipeline", help="Queue a pipeline run")
    trigger_parser.add_argument("pipeline_id", help="Pipeline id")
    trigger_parser.add_argument("branch", nargs="?", default=None, help="Branch (default: pipeline default branch)")

    serve_parser = subparsers.add_parser("serve", help="Run the web UI")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    return parser


COMMANDS = {
    "version": cmd_version,
    "list-libraries": cmd_list_libraries,
    "list-variables": cmd_list_variables,
    "list-all-variables": cmd_list_all_variables,
    "get-variable": cmd_get_variable,
    "update-variable": cmd_update_variable,
    "add-variable": cmd_add_variable,
    "create-library": cmd_create_library,
    "list-pipelines": cmd_list_pipelines,
    "trigger-pipeline": cmd_trigger_pipeline,
    "serve": cmd_serve,
}

CONFIG_COMMANDS = {
    "set-path": cmd_config_set_path,
    "show": cmd_config_show,
    "clear": cmd_config_clear,
}


def main(argv=None):
    """Main CLI entrypoint.

    Exit codes:
        0 - Success
        1 - Runtime errors (configuration, request failures, not found)
        2 - Usage errors (invalid arguments)
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(2)

    if args.command == "config":
        handler = CONFIG_COMMANDS.get(args.config_command)
    else:
        handler = COMMANDS.get(args.command)

    if handler is None:
        parser.print_help()
        sys.exit(2)

    try:
        handler(args)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
