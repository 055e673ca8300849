"""Single-page web UI for variable libraries and pipelines."""
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlencode

import httpx
from fastapi import FastAPI, Form, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.concurrency import run_in_threadpool

from azdo_envmanager import __version__
from azdo_envmanager.variables.domains.config_loader import load_config
from azdo_envmanager.variables.domains.models import Configuration, VariableGroup
from azdo_envmanager.variables.workflows.envmanager_service import EnvManagerService, flatten_variables

logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

OVERRIDE_PREFIX = "override_"


def _redirect_home(message: str = "", error: str = "") -> RedirectResponse:
    params = {key: value for key, value in (("message", message), ("error", error)) if value}
    url = "/?" + urlencode(params) if params else "/"
    return RedirectResponse(url=url, status_code=303)


def _display_fields(config: Configuration, groups: List[VariableGroup]) -> List[str]:
    """Columns of the library matrix: configured fields, else every known variable name."""
    if config.expected_fields:
        return list(config.expected_fields)
    return sorted({name for group in groups for name in group.variables})


def create_app(config: Optional[Configuration] = None, transport: Optional[httpx.BaseTransport] = None) -> FastAPI:
    """
    Build the web app.

    Configuration is loaded here when not given, so a missing setting stops
    the app before it starts serving. The service is opened on startup and
    closed on shutdown.
    """
    if config is None:
        config = load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.service = EnvManagerService(config, transport=transport)
        logger.info(f"Managing project {config.project_name} at {config.organization_url}")
        try:
            yield
        finally:
            app.state.service.close()

    app = FastAPI(title="Azure DevOps Environment Manager", version=__version__, lifespan=lifespan)

    @app.exception_handler(RequestValidationError)
    async def invalid_input(request: Request, exc: RequestValidationError):
        fields = sorted({str(error["loc"][-1]) for error in exc.errors() if error.get("loc")})
        logger.warning(f"Rejected {request.method} {request.url.path}: invalid {', '.join(fields)}")
        return _redirect_home(error=f"Invalid input: {', '.join(fields) or 'form'}")

    def _service(request: Request) -> EnvManagerService:
        return request.app.state.service

    @app.get("/", response_class=HTMLResponse)
    def index(request: Request, message: str = "", error: str = ""):
        service = _service(request)
        pipelines = service.list_pipelines()
        groups = service.list_variable_groups()
        all_variables = flatten_variables(groups)

        return templates.TemplateResponse(
            request,
            "index.html",
            {
                "project": config.project_name,
                "pipelines": pipelines,
                "groups": groups,
                "all_variables": all_variables,
                "fields": _display_fields(config, groups),
                "message": message,
                "error": error,
            },
        )

    @app.post("/variables")
    def update_variable(
        request: Request,
        library_id: int = Form(...),
        name: str = Form(...),
        value: str = Form(""),
    ):
        name = name.strip()
        if not name:
            return _redirect_home(error="Variable name is required")

        if _service(request).update_variable(library_id, name, value):
            return _redirect_home(message=f"Variable '{name}' saved in library {library_id}")
        return _redirect_home(error=f"Failed to save variable '{name}' in library {library_id}")

    @app.post("/pipelines/{pipeline_id}/run")
    def run_pipeline(request: Request, pipeline_id: int):
        run_id = _service(request).queue_pipeline_run(pipeline_id)
        if run_id is None:
            return _redirect_home(error=f"Failed to queue pipeline {pipeline_id}")
        return _redirect_home(message=f"Queued run {run_id} for pipeline {pipeline_id}")

    @app.post("/libraries")
    async def create_library(request: Request, template_id: int = Form(...), name: str = Form("")):
        name = name.strip()
        if not name:
            return _redirect_home(error="Library name is required")

        form = await request.form()
        overrides = {
            key[len(OVERRIDE_PREFIX):]: str(value)
            for key, value in form.items()
            if key.startswith(OVERRIDE_PREFIX)
        }

        new_id = await run_in_threadpool(
            _service(request).create_group_from_template, template_id, name, overrides
        )
        if new_id is None:
            return _redirect_home(error=f"Failed to create library '{name}' from template {template_id}")
        return _redirect_home(message=f"Created library '{name}' with id {new_id}")

    return app
