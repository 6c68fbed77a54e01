"""CLI entry point: ris.

Subcommands:
    ris serve                         # API server + background loops
    ris init-db                       # Create enum types and tables
    ris process-webhooks              # Drain the webhook queue once
    ris failed-webhooks | requeue-webhooks
    ris retry [--owner X --repo Y]    # Due retries, or one library
    ris refresh-stale | refresh-all   # Re-collect stale / every approved library
    ris libraries [--status pending]  # Installed repositories awaiting review
    ris approve | reject | resubmit OWNER REPO
    ris stats | failed | lock-status | lock-clear
    ris scores | allocate 2025-Q3 --revenue 100000
    ris token admin@example.com       # Mint an admin bearer token
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rispipeline.api import deps
from rispipeline.core.database import create_schema
from rispipeline.core.logging import setup_logging
from rispipeline.services import ServiceError

T = TypeVar("T")


def _run(fn: Callable[[async_sessionmaker[AsyncSession]], Awaitable[T]]) -> T:
    """Run *fn* against a fresh engine, disposing it afterwards."""

    async def _main() -> T:
        factory = deps.init_session_factory()
        try:
            return await fn(factory)
        finally:
            await deps.dispose_engine()

    try:
        return asyncio.run(_main())
    except ServiceError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
def main(verbose: bool) -> None:
    """RIS pipeline: collection, webhook processing and scoring."""
    if verbose:
        os.environ["RIS_LOG_LEVEL"] = "DEBUG"
    setup_logging()


@main.command("serve")
@click.option("--host", default="0.0.0.0", help="Bind address")
@click.option("--port", default=8000, type=int, help="Bind port")
def serve(host: str, port: int) -> None:
    """Run the API server with the background loops."""
    import uvicorn

    uvicorn.run("rispipeline.api:create_app", factory=True, host=host, port=port)


@main.command("init-db")
def init_db() -> None:
    """Create the enum types and tables (idempotent)."""

    async def _create(_factory: async_sessionmaker[AsyncSession]) -> list[str]:
        return await create_schema(deps.get_engine())

    tables = _run(_create)
    click.echo(f"Schema ready: {len(tables)} tables ({', '.join(tables)})")


@main.command("process-webhooks")
@click.option("--max-events", default=100, type=int, help="Events to drain in this pass")
def process_webhooks(max_events: int) -> None:
    """Drain queued webhook events once."""
    processor = deps.get_webhook_processor()
    summary = _run(lambda f: processor.process(f, max_events=max_events))
    _echo_json(summary)


@main.command("failed-webhooks")
@click.option("--limit", default=50, type=int)
def failed_webhooks(limit: int) -> None:
    """List webhook events that failed to apply."""
    queue = deps.get_queue_service()

    async def _list(factory: async_sessionmaker[AsyncSession]) -> list:
        async with factory() as session:
            return await queue.list_failed(session, limit)

    events = _run(_list)
    if not events:
        click.echo("No failed webhook events.")
        return
    for e in events:
        click.echo(
            f"  {e.delivery_id}  {e.event_type:13s}  {e.owner}/{e.repo}  "
            f"attempts={e.attempts}  {e.error or ''}"
        )


@main.command("requeue-webhooks")
def requeue_webhooks() -> None:
    """Return every failed webhook event to the queue."""
    queue = deps.get_queue_service()

    async def _requeue(factory: async_sessionmaker[AsyncSession]) -> int:
        async with factory() as session:
            async with session.begin():
                return await queue.requeue_failed(session)

    click.echo(f"Requeued {_run(_requeue)} event(s).")


@main.command("retry")
@click.option("--owner", default=None, help="Retry only this library (with --repo)")
@click.option("--repo", default=None, help="Retry only this library (with --owner)")
@click.option("--max-retries", default=10, type=int, help="Libraries per pass")
def retry(owner: str | None, repo: str | None, max_retries: int) -> None:
    """Resume failed or partial collections whose backoff has elapsed."""
    if bool(owner) != bool(repo):
        raise click.UsageError("--owner and --repo must be given together")
    scheduler = deps.get_collection_scheduler()
    if owner and repo:
        result = _run(lambda f: scheduler.retry_library(f, owner, repo, actor="cli"))
        _echo_json(result.to_dict())
        return
    stats = _run(lambda f: scheduler.process_retries(f, max_retries, started_by="cli"))
    _echo_json(stats.to_dict())


@main.command("refresh-stale")
@click.option("--max-libraries", default=10, type=int, help="Libraries per pass")
def refresh_stale(max_libraries: int) -> None:
    """Re-collect libraries marked stale by webhook activity."""
    scheduler = deps.get_collection_scheduler()
    stats = _run(lambda f: scheduler.refresh_stale(f, max_libraries, started_by="cli"))
    _echo_json(stats.to_dict())


@main.command("refresh-all")
def refresh_all() -> None:
    """Fully re-collect every approved library."""
    scheduler = deps.get_collection_scheduler()
    stats = _run(lambda f: scheduler.refresh_all(f, started_by="cli"))
    _echo_json(stats.to_dict())


@main.command("libraries")
@click.option(
    "--status", default=None, type=click.Choice(["pending", "approved", "rejected"]),
    help="Only libraries in this review status",
)
def libraries(status: str | None) -> None:
    """List installed repositories and their review status."""
    approvals = deps.get_approval_service()

    async def _list(factory: async_sessionmaker[AsyncSession]) -> list:
        async with factory() as session:
            return await approvals.list(session, status)

    rows = _run(_list)
    if not rows:
        click.echo("No libraries.")
        return
    for r in rows:
        click.echo(
            f"  {r.owner}/{r.repo:30s}  {r.status:8s}  submitted={r.submitted_at:%Y-%m-%d}  "
            f"{r.reason or ''}"
        )


@main.command("approve")
@click.argument("owner")
@click.argument("repo")
@click.option("--actor", default="cli", help="Recorded in the audit log")
def approve(owner: str, repo: str, actor: str) -> None:
    """Approve OWNER/REPO for collection and scoring."""
    approvals = deps.get_approval_service()

    async def _approve(factory: async_sessionmaker[AsyncSession]) -> Any:
        async with factory() as session:
            async with session.begin():
                return await approvals.approve(session, owner, repo, actor=actor)

    row = _run(_approve)
    click.echo(f"Approved {row.owner}/{row.repo}; first collection queued.")


@main.command("reject")
@click.argument("owner")
@click.argument("repo")
@click.option("--reason", required=True, help="Shown to reviewers and kept on the record")
@click.option("--actor", default="cli", help="Recorded in the audit log")
def reject(owner: str, repo: str, reason: str, actor: str) -> None:
    """Reject OWNER/REPO. Approved libraries stop being collected."""
    approvals = deps.get_approval_service()

    async def _reject(factory: async_sessionmaker[AsyncSession]) -> Any:
        async with factory() as session:
            async with session.begin():
                return await approvals.reject(session, owner, repo, reason=reason, actor=actor)

    row = _run(_reject)
    click.echo(f"Rejected {row.owner}/{row.repo}: {row.reason}")


@main.command("resubmit")
@click.argument("owner")
@click.argument("repo")
@click.option("--actor", default="cli", help="Recorded in the audit log")
def resubmit(owner: str, repo: str, actor: str) -> None:
    """Send a rejected OWNER/REPO back to the review queue."""
    approvals = deps.get_approval_service()

    async def _resubmit(factory: async_sessionmaker[AsyncSession]) -> Any:
        async with factory() as session:
            async with session.begin():
                return await approvals.resubmit(session, owner, repo, actor=actor)

    row = _run(_resubmit)
    click.echo(f"{row.owner}/{row.repo} is pending review again.")


@main.command("stats")
def stats() -> None:
    """Collection state counts and installations."""
    scheduler = deps.get_collection_scheduler()
    _echo_json(_run(scheduler.get_scheduler_stats))


@main.command("failed")
@click.option("--limit", default=50, type=int)
def failed(limit: int) -> None:
    """List libraries whose collection is failing."""
    scheduler = deps.get_collection_scheduler()
    states = _run(lambda f: scheduler.list_failed(f, limit))
    for s in states:
        click.echo(
            f"  {s.owner}/{s.repo:30s}  {s.status:9s}  attempts={s.attempts}  "
            f"next={s.next_retry_at or '-'}  {s.last_error or ''}"
        )


@main.command("lock-status")
def lock_status() -> None:
    """Show who holds the global collection lock."""
    lock = deps.get_lock_service()

    async def _status(factory: async_sessionmaker[AsyncSession]) -> dict:
        async with factory() as session:
            return await lock.status(session)

    _echo_json(_run(_status))


@main.command("lock-clear")
@click.option("--actor", default="cli", help="Recorded in the audit log")
@click.confirmation_option(prompt="Force-clear the collection lock?")
def lock_clear(actor: str) -> None:
    """Force-clear the global collection lock."""
    lock = deps.get_lock_service()

    async def _clear(factory: async_sessionmaker[AsyncSession]) -> dict | None:
        async with factory() as session:
            async with session.begin():
                return await lock.force_clear(session, actor=actor)

    cleared = _run(_clear)
    if cleared is None:
        click.echo("No lock held.")
    else:
        _echo_json(cleared)


@main.command("scores")
@click.option("--limit", default=25, type=int, help="Rows to print")
def scores(limit: int) -> None:
    """Print current RIS scores, highest first."""
    score_service = deps.get_score_service()

    async def _report(factory: async_sessionmaker[AsyncSession]) -> dict:
        async with factory() as session:
            return await score_service.report(session)

    report = _run(_report)
    for s in report["scores"][:limit]:
        click.echo(
            f"  {s.library_name:30s}  ris={s.ris:.4f}  ef={s.ef:.3f}  cq={s.cq:.3f}  "
            f"mh={s.mh:.3f}  cb={s.cb:.3f}  ma={s.ma:.3f}"
        )
    _echo_json(report["summary"])


@main.command("allocate")
@click.argument("period")
@click.option("--revenue", required=True, type=float, help="Total quarterly revenue")
@click.option("--smooth", is_flag=True, help="EMA-smooth against the previous quarter")
def allocate(period: str, revenue: float, smooth: bool) -> None:
    """Compute and cache the allocation for PERIOD (YYYY-Qn)."""
    allocation_service = deps.get_allocation_service()

    async def _compute(factory: async_sessionmaker[AsyncSession]) -> dict:
        async with factory() as session:
            async with session.begin():
                return await allocation_service.compute(session, period, revenue, smooth=smooth)

    payload = _run(_compute)
    click.echo(
        f"{payload['period']}: ris_pool={payload['ris_pool']:.2f} "
        f"allocated={payload['total_allocated']:.2f} eligible={payload['eligible_count']}"
    )
    for lib in payload["libraries"]:
        click.echo(f"  {lib['library_name']:30s}  {lib['allocated_amount']:>12.2f}")


@main.command("token")
@click.argument("email")
@click.option("--hours", default=12, type=int, help="Token lifetime")
def token(email: str, hours: int) -> None:
    """Mint an admin bearer token for EMAIL."""
    from datetime import timedelta

    try:
        click.echo(
            deps.get_auth_service().create_access_token(email, expires_in=timedelta(hours=hours))
        )
    except ServiceError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
