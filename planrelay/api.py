"""HTTP surface for plan continuation, sweeping and webhook delivery."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .auth import require_cron_secret
from .contracts import CreatePlanInput
from .errors import (
    InvalidTransitionError,
    PlanConflictError,
    PlanNotFoundError,
    UnauthorizedError,
    WebhookNotFoundError,
    WebhookValidationError,
)
from .persistence import DeliveryStatus
from .service import Services, build_services
from .webhooks import WEBHOOK_EVENTS

logger = logging.getLogger(__name__)


class ApprovalRequest(BaseModel):
    action: str


class RegisterWebhookRequest(BaseModel):
    user_id: str
    name: str
    url: str
    events: List[str] = Field(default_factory=list)
    headers: Dict[str, str] = Field(default_factory=dict)
    max_attempts: int = 3
    timeout_seconds: int = 30


class UpdateWebhookRequest(BaseModel):
    name: Optional[str] = None
    url: Optional[str] = None
    events: Optional[List[str]] = None
    headers: Optional[Dict[str, str]] = None
    is_active: Optional[bool] = None
    max_attempts: Optional[int] = None
    timeout_seconds: Optional[int] = None


def get_services(request: Request) -> Services:
    return request.app.state.services


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


router = APIRouter(dependencies=[Depends(require_cron_secret)])


@router.post("/plans/{plan_id}/continue")
async def continue_plan(plan_id: str, services: Services = Depends(get_services)):
    """Execute one more step of a plan and queue the next continuation."""
    try:
        outcome = await services.plans.continue_plan(plan_id)
    except PlanConflictError as e:
        logger.warning(f"Continuation conflict for plan_id={plan_id}: {e}")
        return _error(str(e), 409)
    except Exception as e:
        # A missing plan lands here too and is reported as a generic 500.
        logger.exception(f"Continuation failed for plan_id={plan_id}")
        return _error(str(e) or "Plan continuation failed", 500)
    return outcome.to_response()


@router.get("/cron/sweep-plans")
async def sweep_plans(services: Services = Depends(get_services)):
    """Force-fail running plans that stopped making progress."""
    try:
        result = await services.sweeper.sweep()
    except Exception as e:
        logger.exception("Plan sweep failed")
        return _error(str(e) or "Plan sweep failed", 500)
    if result.total == 0:
        return {"swept": 0}
    logger.info(f"Swept {result.swept}/{result.total} orphaned plans")
    return {"swept": result.swept, "total": result.total}


@router.get("/cron/webhooks")
async def deliver_webhooks(services: Services = Depends(get_services)):
    """Deliver one bounded batch of pending webhook events."""
    settings = services.config.webhooks
    try:
        report = await services.webhooks.process_pending(
            batch_size=settings.batch_size,
            time_budget=settings.time_budget_seconds,
        )
    except Exception as e:
        logger.exception("Webhook delivery tick failed")
        return _error(str(e) or "Webhook delivery failed", 500)
    return {
        "processed": report.processed,
        "succeeded": report.succeeded,
        "failed": report.failed,
        "durationMs": round(report.duration_ms),
    }


@router.post("/plans", status_code=201)
async def create_plan(body: CreatePlanInput, services: Services = Depends(get_services)):
    plan, queued = await services.plans.create_plan(body)
    return {"plan": plan.model_dump(mode="json"), "continuationQueued": queued}


@router.get("/plans/{plan_id}")
async def show_plan(plan_id: str, services: Services = Depends(get_services)):
    try:
        plan = await services.plans.get_plan(plan_id)
    except PlanNotFoundError as e:
        return _error(str(e), 404)
    return plan.model_dump(mode="json")


@router.post("/plans/{plan_id}/approve")
async def approve_plan(
    plan_id: str, body: ApprovalRequest, services: Services = Depends(get_services)
):
    """Approve or reject the step a paused plan is waiting on."""
    if body.action not in ("approve", "reject"):
        return _error("action must be 'approve' or 'reject'", 400)
    try:
        if body.action == "approve":
            plan = await services.plans.approve(plan_id)
        else:
            plan = await services.plans.reject(plan_id)
    except PlanNotFoundError as e:
        return _error(str(e), 404)
    except InvalidTransitionError as e:
        return _error(str(e), 400)
    except PlanConflictError as e:
        return _error(str(e), 409)
    return plan.model_dump(mode="json")


@router.post("/webhooks", status_code=201)
async def register_webhook(
    body: RegisterWebhookRequest, services: Services = Depends(get_services)
):
    try:
        endpoint = await services.webhooks.register_endpoint(
            user_id=body.user_id,
            name=body.name,
            url=body.url,
            events=body.events,
            headers=body.headers,
            max_attempts=body.max_attempts,
            timeout_seconds=body.timeout_seconds,
        )
    except WebhookValidationError as e:
        return _error(str(e), 400)
    return {
        "webhook": endpoint.model_dump(mode="json"),
        "warning": "Save the signing secret securely. It will not be shown again.",
    }


@router.get("/webhooks")
async def list_webhooks(
    user_id: Optional[str] = None,
    history: int = 10,
    services: Services = Depends(get_services),
):
    """List endpoints with their health and most recent deliveries."""
    webhooks = []
    for endpoint, deliveries in await services.webhooks.list_endpoints(
        user_id=user_id, history=history
    ):
        item = endpoint.model_dump(mode="json", exclude={"secret"})
        item["recent_deliveries"] = [d.model_dump(mode="json") for d in deliveries]
        item["stats"] = {
            status.value: sum(1 for d in deliveries if d.status == status)
            for status in DeliveryStatus
        }
        webhooks.append(item)
    return {"webhooks": webhooks, "available_events": list(WEBHOOK_EVENTS)}


@router.put("/webhooks/{webhook_id}")
async def update_webhook(
    webhook_id: str,
    body: UpdateWebhookRequest,
    services: Services = Depends(get_services),
):
    try:
        endpoint = await services.webhooks.update_endpoint(
            webhook_id, **body.model_dump(exclude_none=True)
        )
    except WebhookNotFoundError as e:
        return _error(str(e), 404)
    except WebhookValidationError as e:
        return _error(str(e), 400)
    return {"webhook": endpoint.model_dump(mode="json", exclude={"secret"})}


@router.delete("/webhooks/{webhook_id}")
async def delete_webhook(webhook_id: str, services: Services = Depends(get_services)):
    try:
        await services.webhooks.delete_endpoint(webhook_id)
    except WebhookNotFoundError as e:
        return _error(str(e), 404)
    return {"deleted": webhook_id}


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Create the FastAPI application around ``services``."""
    app = FastAPI(title="planrelay")
    app.state.services = services or build_services()

    @app.exception_handler(UnauthorizedError)
    async def _unauthorized(request: Request, exc: UnauthorizedError) -> JSONResponse:
        logger.warning(f"Rejected unauthorized {request.method} {request.url.path}")
        return _error("Unauthorized", 401)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    app.include_router(router)
    return app
