"""Command line interface for running planrelay services."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from planrelay import ContinuationWorker, PlanStatus, build_services, load_config
from planrelay.contracts import CreatePlanInput, PlanStepInput

app = typer.Typer(help="CLI for planrelay plans and webhooks")

# Command groups
plan_app = typer.Typer(help="Commands for inspecting and creating plans")
webhooks_app = typer.Typer(help="Commands for webhook delivery")

app.add_typer(plan_app, name="plan")
app.add_typer(webhooks_app, name="webhooks")


@app.callback()
def main(
    log_level: str = typer.Option("INFO", help="Logging level for planrelay loggers"),
) -> None:
    """planrelay CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("serve")
def serve(
    host: Optional[str] = None,
    port: Optional[int] = None,
) -> None:
    """
    Serve the HTTP endpoints with uvicorn.

    Host and port default to the ``server`` section of the configuration.

    Example:
        planrelay serve --port 8080
    """
    import uvicorn

    from planrelay.api import create_app

    config = load_config()
    uvicorn.run(
        create_app(build_services(config)),
        host=host or config.server.host,
        port=port or config.server.port,
    )


@app.command("worker")
def worker(lifespan: Optional[float] = None) -> None:
    """
    Run a worker that drains the plan continuation queue.

    Each message executes one plan step; running plans queue their next
    continuation, so a worker keeps a plan moving until it finishes.

    Args:
        lifespan: Worker timeout in seconds (default: run indefinitely)

    Example:
        planrelay worker --lifespan 300
    """
    services = build_services()
    typer.echo("Starting continuation worker")
    asyncio.run(ContinuationWorker(services.transport, services.plans).start(lifespan=lifespan))


@app.command("sweep")
def sweep() -> None:
    """
    Force-fail running plans that stopped making progress.

    Example:
        planrelay sweep
        # Output: Swept 2/2 orphaned plans
    """
    services = build_services()
    result = asyncio.run(services.sweeper.sweep())
    typer.echo(f"Swept {result.swept}/{result.total} orphaned plans")


@plan_app.command("list")
def plan_list(status: Optional[str] = None) -> None:
    """
    List plans with their status and progress.

    Example:
        planrelay plan list --status running
        # Output: 3f2a...    running    1/3
    """
    try:
        status_filter = PlanStatus(status) if status else None
    except ValueError:
        typer.secho(f"Unknown status: {status}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    services = build_services()
    plans = asyncio.run(services.repository.list_plans(status=status_filter))
    if not plans:
        typer.echo("No plans found")
        return
    for plan in plans:
        typer.echo(
            f"{plan.id}\t{plan.status.value}\t{plan.current_step_index}/{plan.total_steps}"
        )


@plan_app.command("show")
def plan_show(plan_id: str) -> None:
    """
    Show a plan's status and step-by-step results.

    Example:
        planrelay plan show 3f2a...
        # Output: Plan 3f2a...: running (1/3)
        #         - [completed] echo: say hello
    """
    services = build_services()
    plan = asyncio.run(services.repository.get_plan(plan_id))
    if plan is None:
        typer.echo("Plan not found")
        raise typer.Exit(code=1)
    typer.echo(
        f"Plan {plan.id}: {plan.status.value} ({plan.current_step_index}/{plan.total_steps})"
    )
    if plan.goal:
        typer.echo(f"Goal: {plan.goal}")
    if plan.failure_reason:
        typer.echo(f"Failure: {plan.failure_reason}")
    for step in plan.steps:
        line = f"- [{step.status.value}] {step.action}"
        if step.description:
            line += f": {step.description}"
        if step.result is not None and step.result.error:
            line += f" ({step.result.error})"
        typer.echo(line)


@plan_app.command("create")
def plan_create(
    user_id: str,
    goal: str,
    steps_file: Path = typer.Option(..., help="JSON file with a list of steps"),
) -> None:
    """
    Create a plan from a JSON list of steps and queue its first continuation.

    Example:
        planrelay plan create user-1 "Send digest" --steps-file steps.json
    """
    try:
        raw_steps = json.loads(steps_file.read_text())
    except (OSError, ValueError) as exc:
        typer.secho(f"Cannot read steps: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        steps = [PlanStepInput.model_validate(s) for s in raw_steps]
    except ValidationError as exc:
        typer.secho(f"Invalid steps: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    services = build_services()
    plan, queued = asyncio.run(
        services.plans.create_plan(CreatePlanInput(user_id=user_id, goal=goal, steps=steps))
    )
    typer.echo(f"Created plan {plan.id} with {plan.total_steps} steps")
    if not queued:
        typer.secho("First continuation could not be queued", fg=typer.colors.YELLOW)


@webhooks_app.command("deliver")
def webhooks_deliver() -> None:
    """
    Deliver one bounded batch of pending webhook events.

    Example:
        planrelay webhooks deliver
        # Output: processed=3 succeeded=2 failed=1 (142ms)
    """
    services = build_services()
    settings = services.config.webhooks
    report = asyncio.run(
        services.webhooks.process_pending(
            batch_size=settings.batch_size, time_budget=settings.time_budget_seconds
        )
    )
    typer.echo(
        f"processed={report.processed} succeeded={report.succeeded} "
        f"failed={report.failed} ({report.duration_ms:.0f}ms)"
    )


@webhooks_app.command("list")
def webhooks_list(user_id: Optional[str] = None) -> None:
    """List registered webhook endpoints and their health."""
    services = build_services()
    endpoints = asyncio.run(services.repository.list_endpoints(user_id=user_id))
    if not endpoints:
        typer.echo("No webhooks found")
        return
    for endpoint in endpoints:
        state = "active" if endpoint.is_active else "inactive"
        typer.echo(
            f"{endpoint.id}\t{endpoint.url}\t{state}\t"
            f"failures={endpoint.consecutive_failures}"
        )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
