#!/usr/bin/env python3
"""mongrate CLI - Command-line interface for agent-driven database migrations.

Usage:
    mongrate create my-app --repo https://github.com/owner/repo
    mongrate plan job-1a2b3c4d
    mongrate execute job-1a2b3c4d
    mongrate chat job-1a2b3c4d "Why is the orders table embedded?"
    mongrate serve
"""

import asyncio
import json
import logging
from typing import Any, Callable, Optional

import click

from .app import MongrateApp, create_app
from .core.job import Job, JobConfig, JobStatus
from .orchestrator.orchestrator import OrchestratorResult
from .stream.events import LogEvent, StatusEvent, ToolResultEvent, ToolStartEvent

STATUS_COLORS = {
    JobStatus.PENDING: "white",
    JobStatus.CLONING: "cyan",
    JobStatus.PLANNING: "cyan",
    JobStatus.PLAN_READY: "yellow",
    JobStatus.EXECUTING: "cyan",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
}


def _echo_event(event: Any) -> None:
    """Print non-text stream events while a turn runs in the foreground."""
    if isinstance(event, ToolStartEvent):
        click.echo()
        click.echo(click.style(f"[TOOL] {event.name}", fg="blue"))
    elif isinstance(event, ToolResultEvent) and not event.success:
        click.echo(click.style(f"[TOOL ERROR] {(event.error or '')[:500]}", fg="red"))
    elif isinstance(event, StatusEvent):
        click.echo(click.style(f"[STATUS] {event.status}", fg="magenta"))
    elif isinstance(event, LogEvent) and event.level == "error":
        click.echo(click.style(f"[ERROR] {event.message}", fg="red"))


def _echo_chunk(text: str) -> None:
    click.echo(text, nl=False)


async def _with_app(job_id: Optional[str], action: Callable[[MongrateApp], Any]) -> Any:
    """Run an action against a fresh app, echoing the job's events."""
    app = create_app()
    unsubscribe = app.broadcaster.subscribe(job_id, _echo_event) if job_id else None
    try:
        return await action(app)
    finally:
        if unsubscribe:
            unsubscribe()
        await app.shutdown()


def _finish(result: OrchestratorResult, success_message: str) -> None:
    click.echo()
    if not result.success:
        raise click.ClickException(result.error or "Operation failed")
    click.echo(click.style(success_message, fg="green", bold=True))


async def _load_job(app: MongrateApp, job_id: str) -> Job:
    job = await app.store.get(job_id)
    if job is None:
        raise click.ClickException(f"Job {job_id} not found")
    return job


@click.group()
@click.version_option(version="0.1.0", prog_name="mongrate")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """mongrate - Agent-driven PostgreSQL to MongoDB migrations.

    Each job clones a repository, lets a planning agent analyze it, and then
    lets an execution agent carry out the plan.

    \b
    Quick start:
        mongrate create my-app --repo https://github.com/owner/repo
        mongrate plan <job-id>
        mongrate execute <job-id>
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.argument("name")
@click.option("--repo", "-r", required=True, help="Repository URL to migrate.")
@click.option("--branch", "-b", default=None, help="Branch to clone. Defaults to main.")
@click.option("--postgres-url", default=None, help="Source PostgreSQL connection string.")
@click.option("--mongo-url", default=None, help="Target MongoDB connection string. Defaults to $MONGODB_URI.")
@click.option("--github-token", default=None, help="Token for private repositories. Defaults to $GITHUB_TOKEN.")
def create(
    name: str,
    repo: str,
    branch: Optional[str],
    postgres_url: Optional[str],
    mongo_url: Optional[str],
    github_token: Optional[str],
):
    """Create a new migration job.

    \b
    Examples:
        mongrate create shop --repo https://github.com/acme/shop
        mongrate create shop -r https://github.com/acme/shop --postgres-url postgres://...
    """

    async def action(app: MongrateApp) -> Job:
        target = mongo_url or app.config.default_mongo_url
        if not target:
            raise click.ClickException("A MongoDB URL is required (--mongo-url or MONGODB_URI)")
        config = JobConfig(
            repo_url=repo,
            branch=branch or app.config.default_branch,
            postgres_url=postgres_url,
            mongo_url=target,
            github_token=github_token or app.config.default_github_token,
        )
        return await app.orchestrator.create_job(name, config)

    job = asyncio.run(_with_app(None, action))
    click.echo(f"Created job {job.id}")
    click.echo(f"  Workspace: {job.work_dir}")
    click.echo()
    click.echo(click.style("Ready!", fg="green", bold=True))
    click.echo(f"  Run: mongrate plan {job.id}")


@main.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def list_cmd(as_json: bool):
    """List all migration jobs."""

    async def action(app: MongrateApp):
        return await app.store.list()

    jobs = asyncio.run(_with_app(None, action))
    if not jobs:
        click.echo("No jobs found. Create one with 'mongrate create'.")
        return

    if as_json:
        click.echo(json.dumps([job.to_public_dict() for job in jobs], indent=2))
        return

    for job in jobs:
        status = click.style(job.status.value, fg=STATUS_COLORS[job.status])
        click.echo(f"{job.id}  {status:<20} {job.name}  ({job.config.repo_url})")


@main.command()
@click.argument("job_id")
@click.option("--logs", "-n", type=int, default=20, help="Number of log entries to show.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def show(job_id: str, logs: int, as_json: bool):
    """Show a job's status, plan, result and recent log."""

    async def action(app: MongrateApp) -> Job:
        return await _load_job(app, job_id)

    job = asyncio.run(_with_app(None, action))
    if as_json:
        click.echo(json.dumps(job.to_public_dict(), indent=2))
        return

    click.echo(f"Job {job.id}: {job.name}")
    click.echo(f"  Status: {click.style(job.status.value, fg=STATUS_COLORS[job.status])}")
    if job.current_phase:
        click.echo(f"  Phase: {job.current_phase.value}")
    click.echo(f"  Repository: {job.config.repo_url} ({job.config.branch})")
    click.echo(f"  Workspace: {job.work_dir}")
    if job.resume_token:
        click.echo(f"  Session: {job.resume_token}")
    if job.plan is not None:
        click.echo(f"  Plan: {job.plan.get('summary') or 'available'}")
    if job.result is not None:
        click.echo(f"  Result: {job.result.summary}")
        if job.result.pr_url:
            click.echo(f"  Pull request: {job.result.pr_url}")

    if logs > 0 and job.log:
        click.echo()
        for entry in job.log[-logs:]:
            click.echo(f"  {entry.timestamp}  [{entry.level.value}] {entry.message}")


@main.command()
@click.argument("job_id")
def plan(job_id: str):
    """Run the planning agent, cloning the repository first if needed."""

    async def action(app: MongrateApp) -> OrchestratorResult:
        job = await _load_job(app, job_id)
        if job.status is JobStatus.PENDING:
            cloned = await app.orchestrator.clone_repository(job_id)
            if not cloned.success:
                return cloned
        return await app.orchestrator.run_turn(job_id, "plan", on_chunk=_echo_chunk)

    result = asyncio.run(_with_app(job_id, action))
    _finish(result, "Plan ready.")
    click.echo(f"  Run: mongrate execute {job_id}")


@main.command()
@click.argument("job_id")
def execute(job_id: str):
    """Run the execution agent against the stored plan."""

    async def action(app: MongrateApp) -> OrchestratorResult:
        return await app.orchestrator.run_turn(job_id, "execute", on_chunk=_echo_chunk)

    result = asyncio.run(_with_app(job_id, action))
    _finish(result, "Migration completed.")


@main.command()
@click.argument("job_id")
@click.argument("message")
def chat(job_id: str, message: str):
    """Send a message to the job's agent session."""
    if not message.strip():
        raise click.ClickException("Message is required")

    async def action(app: MongrateApp) -> OrchestratorResult:
        return await app.orchestrator.send_chat_message(job_id, message, on_chunk=_echo_chunk)

    result = asyncio.run(_with_app(job_id, action))
    click.echo()
    if not result.success:
        raise click.ClickException(result.error or "Chat failed")


@main.command()
@click.argument("job_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
def delete(job_id: str, yes: bool):
    """Delete a job and its workspace."""
    if not yes:
        click.confirm(f"Delete {job_id} and its workspace?", abort=True)

    async def action(app: MongrateApp) -> OrchestratorResult:
        return await app.orchestrator.delete_job(job_id)

    result = asyncio.run(_with_app(None, action))
    if not result.success:
        raise click.ClickException(result.error or "Delete failed")
    click.echo(f"Deleted {job_id}")


@main.command()
@click.option("--host", default="127.0.0.1", help="Interface to bind.")
@click.option("--port", "-p", type=int, default=8080, help="Port to serve on.")
def serve(host: str, port: int):
    """Serve the job API and live event stream."""
    from .viewer.server import run_server

    click.echo(f"Serving on http://{host}:{port}")
    try:
        run_server(create_app(), host=host, port=port)
    except KeyboardInterrupt:
        click.echo("Stopped.")


if __name__ == "__main__":
    main()
