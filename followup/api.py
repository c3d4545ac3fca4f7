"""HTTP API for workflow definitions, execution logs and bulk backfill.

Every response uses the envelope ``{"success", "data", "message"}``; log
listings add ``pagination``. Field names are camelCase.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import __version__
from .constants import CHANNELS, DEFAULT_PAGE_SIZE
from .contracts import CamelModel
from .engine import WorkflowEngine, get_engine
from .errors import FollowupError, InvalidTransition, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class BulkTriggerRequest(CamelModel):
    status: str
    skip_existing: bool = True


class LifecycleEventRequest(CamelModel):
    booking_id: str
    new_status: str
    transition_timestamp: Optional[datetime] = None


def envelope(data: Any = None, message: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    body.update(extra)
    return body


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def engine_dependency(request: Request) -> WorkflowEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        engine = get_engine()
        request.app.state.engine = engine
    return engine


# ----------------------------------------------------------------------
# Workflows

workflows_router = APIRouter(prefix="/workflows", tags=["workflows"])


@workflows_router.get("")
async def list_workflows(
    trigger_action: Optional[str] = Query(None, alias="triggerAction"),
    active_only: bool = Query(False, alias="activeOnly"),
    engine: WorkflowEngine = Depends(engine_dependency),
):
    definitions = await engine.definitions.list(trigger_action, active_only)
    return envelope([d.to_wire() for d in definitions])


@workflows_router.post("", status_code=201)
async def create_workflow(
    payload: Dict[str, Any] = Body(...),
    engine: WorkflowEngine = Depends(engine_dependency),
):
    definition = await engine.definitions.create(payload)
    return envelope(definition.to_wire(), "Workflow created successfully")


@workflows_router.get("/bulk/bookings-by-status")
async def bookings_by_status(
    status: str = Query(...),
    engine: WorkflowEngine = Depends(engine_dependency),
):
    partition = await engine.backfill.preview(status)
    return envelope(partition.to_wire())


@workflows_router.post("/bulk/trigger-by-status")
async def trigger_by_status(
    body: BulkTriggerRequest,
    engine: WorkflowEngine = Depends(engine_dependency),
):
    result = await engine.backfill.trigger(body.status, skip_existing=body.skip_existing)
    return envelope(
        result.to_wire(),
        f"Processed {result.processed} of {result.total} booking(s) "
        f"({result.skipped} skipped, {len(result.errors)} error(s))",
    )


@workflows_router.post("/events")
async def lifecycle_event(
    body: LifecycleEventRequest,
    engine: WorkflowEngine = Depends(engine_dependency),
):
    result = await engine.handle_lifecycle_event(
        body.booking_id, body.new_status, body.transition_timestamp
    )
    if result is None:
        return envelope(
            {"workflowTriggered": False},
            f"Status '{body.new_status}' does not trigger workflows",
        )
    data = result.to_wire()
    data["workflowTriggered"] = bool(result.scheduled)
    return envelope(data)


@workflows_router.get("/{workflow_id}")
async def get_workflow(workflow_id: str, engine: WorkflowEngine = Depends(engine_dependency)):
    definition = await engine.definitions.get(workflow_id)
    return envelope(definition.to_wire())


@workflows_router.put("/{workflow_id}")
async def update_workflow(
    workflow_id: str,
    payload: Dict[str, Any] = Body(...),
    engine: WorkflowEngine = Depends(engine_dependency),
):
    definition = await engine.definitions.update(workflow_id, payload)
    return envelope(definition.to_wire(), "Workflow updated successfully")


@workflows_router.delete("/{workflow_id}")
async def delete_workflow(workflow_id: str, engine: WorkflowEngine = Depends(engine_dependency)):
    await engine.definitions.delete(workflow_id)
    return envelope(message="Workflow deleted successfully")


# ----------------------------------------------------------------------
# Execution logs

logs_router = APIRouter(prefix="/workflow-logs", tags=["workflow-logs"])


@logs_router.get("")
async def list_logs(
    status: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    engine: WorkflowEngine = Depends(engine_dependency),
):
    result = await engine.logs.list(status=status, page=page, limit=limit)
    return envelope(
        [entry.to_wire() for entry in result.items],
        pagination={
            "page": result.page,
            "limit": result.limit,
            "total": result.total,
            "pages": result.pages,
        },
    )


@logs_router.get("/stats")
async def log_stats(engine: WorkflowEngine = Depends(engine_dependency)):
    stats = await engine.logs.stats()
    return envelope(stats.to_wire())


@logs_router.post("/dispatch-due")
async def dispatch_due(engine: WorkflowEngine = Depends(engine_dependency)):
    summary = await engine.dispatcher.run_due()
    return envelope(summary.to_wire())


@logs_router.get("/{log_id}")
async def get_log(log_id: str, engine: WorkflowEngine = Depends(engine_dependency)):
    entry = await engine.logs.get(log_id)
    return envelope(entry.to_wire())


@logs_router.post("/{log_id}/send-now")
async def send_now(log_id: str, engine: WorkflowEngine = Depends(engine_dependency)):
    entry = await engine.dispatcher.send_now(log_id)
    message = "Workflow sent" if entry.status == "executed" else "Workflow send failed"
    return envelope(entry.to_wire(), message)


@logs_router.post("/{log_id}/retry")
async def retry(log_id: str, engine: WorkflowEngine = Depends(engine_dependency)):
    entry = await engine.dispatcher.retry(log_id)
    message = "Retry sent" if entry.status == "executed" else "Retry failed"
    return envelope(entry.to_wire(), message)


# ----------------------------------------------------------------------
# Templates

templates_router = APIRouter(prefix="/templates", tags=["templates"])


@templates_router.get("")
async def list_templates(
    channel: Optional[str] = None, engine: WorkflowEngine = Depends(engine_dependency)
):
    if channel is not None and channel not in CHANNELS:
        raise ValidationError(f"Unknown channel '{channel}'; expected one of {list(CHANNELS)}")
    templates = []
    for template_id in engine.templates.template_ids(channel):
        registered = engine.templates.get(template_id)
        templates.append(
            {
                "templateId": template_id,
                "channel": registered.channel,
                "kind": registered.shape.kind,
                "variables": engine.templates.describe(template_id),
            }
        )
    return envelope(templates)


@templates_router.get("/{template_id}/variables")
async def template_variables(
    template_id: str, engine: WorkflowEngine = Depends(engine_dependency)
):
    registered = engine.templates.get(template_id)
    return envelope(
        {
            "templateId": template_id,
            "kind": registered.shape.kind if registered else None,
            "variables": engine.templates.describe(template_id),
            "exampleContent": engine.templates.preview(template_id),
        }
    )


# ----------------------------------------------------------------------


def create_app(engine: Optional[WorkflowEngine] = None) -> FastAPI:
    """Build the API app; ``engine`` defaults to the configured process engine."""

    app = FastAPI(title="Follow-up Workflows API", version=__version__)
    app.state.engine = engine

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return _error(400, str(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
            for err in exc.errors()
        )
        return _error(400, problems or "Invalid request")

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error(404, str(exc))

    @app.exception_handler(InvalidTransition)
    async def invalid_transition_handler(request: Request, exc: InvalidTransition):
        return _error(409, str(exc))

    @app.exception_handler(FollowupError)
    async def followup_error_handler(request: Request, exc: FollowupError):
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return _error(500, str(exc))

    app.include_router(workflows_router)
    app.include_router(logs_router)
    app.include_router(templates_router)
    return app
