"""
``flask vista`` commands for operating the reconciliation engine from a shell.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import AppGroup, ScriptInfo

from flask_app.models import Organization, User

from .auto_match import AutoMatchEngine
from .batches import ImportBatchManager
from .celery_app import DEFAULT_QUEUE_NAME, EXTENSION_KEY, get_celery_app
from .descriptors import DESCRIPTORS
from .duplicates import DuplicateReporter
from .errors import ReconciliationError
from .ingest import WorkbookIngestService
from .promotion import PromotionEngine

ENTITY_CHOICES = tuple(descriptor.slug for descriptor in DESCRIPTORS.values())


def _resolve_tenant(slug: str) -> Organization:
    organization = Organization.find_by_slug(slug)
    if organization is None:
        raise click.ClickException(f"Organization '{slug}' not found.")
    return organization


def _resolve_user(email: Optional[str]) -> Optional[User]:
    if not email:
        return None
    user = User.find_by_email(email)
    if user is None:
        raise click.ClickException(f"User '{email}' not found.")
    return user


def _resolve_celery(app) -> Celery:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Reconciliation Celery app is unavailable. Ensure RECONCILIATION_ENABLED=true before running worker commands."
        )
    return celery_app


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


@click.group(name="vista", cls=AppGroup)
@click.pass_context
def vista_cli(ctx):
    """Vista ERP reconciliation commands."""
    info = ctx.ensure_object(ScriptInfo)
    info.load_app()


def get_disabled_vista_group() -> click.Group:
    """
    Return a command group that tells the operator reconciliation is disabled.
    """

    @click.group(name="vista", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Vista commands are unavailable because RECONCILIATION_ENABLED=false.")

    return disabled_group


@vista_cli.command("import")
@click.argument("file_path", type=click.Path(path_type=Path, exists=True, dir_okay=False))
@click.option("--tenant", "tenant_slug", required=True, help="Organization slug to import into.")
@click.option("--user", "user_email", help="Email of the user recorded on the import batches.")
def vista_import(file_path: Path, tenant_slug: str, user_email: Optional[str]):
    """Import a Vista export workbook."""
    tenant = _resolve_tenant(tenant_slug)
    user = _resolve_user(user_email)
    try:
        with file_path.open("rb") as handle:
            result = WorkbookIngestService().ingest(
                handle,
                file_name=file_path.name,
                tenant_id=tenant.id,
                user_id=user.id if user else None,
            )
    except ReconciliationError as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_json(result.as_dict())
    if result.failed:
        raise click.ClickException(result.error)


@vista_cli.command("auto-match")
@click.option("--tenant", "tenant_slug", required=True)
@click.option("--type", "entity_type", type=click.Choice(ENTITY_CHOICES), help="Limit to one entity type.")
def vista_auto_match(tenant_slug: str, entity_type: Optional[str]):
    """Auto-link unmatched contracts and work orders (or one chosen type)."""
    tenant = _resolve_tenant(tenant_slug)
    engine = AutoMatchEngine()
    if entity_type:
        summary = engine.run(entity_type, tenant.id)
        _echo_json({summary.entity_type: summary.as_dict()})
        return
    _echo_json({key: summary.as_dict() for key, summary in engine.run_all(tenant.id).items()})


@vista_cli.command("promote")
@click.argument("entity_type", type=click.Choice(ENTITY_CHOICES + ("departments",)))
@click.option("--tenant", "tenant_slug", required=True)
@click.option("--user", "user_email")
def vista_promote(entity_type: str, tenant_slug: str, user_email: Optional[str]):
    """Create platform entities for unmatched records of ENTITY_TYPE."""
    tenant = _resolve_tenant(tenant_slug)
    user = _resolve_user(user_email)
    engine = PromotionEngine()
    user_id = user.id if user else None
    if entity_type == "departments":
        result = engine.promote_departments(tenant.id, user_id)
    else:
        result = engine.promote(entity_type, tenant.id, user_id)
    _echo_json(result.as_dict())


@vista_cli.command("duplicates-stats")
@click.option("--tenant", "tenant_slug", required=True)
def vista_duplicates_stats(tenant_slug: str):
    """Confidence bands of the manual review queue."""
    tenant = _resolve_tenant(tenant_slug)
    _echo_json(DuplicateReporter().stats(tenant.id))


@vista_cli.command("history")
@click.option("--tenant", "tenant_slug", required=True)
@click.option("--limit", type=int, help="Number of batches to show.")
def vista_history(tenant_slug: str, limit: Optional[int]):
    """Recent import batches, newest first."""
    tenant = _resolve_tenant(tenant_slug)
    batches = ImportBatchManager().history(tenant.id, limit=limit)
    if not batches:
        click.echo("No imports recorded.")
        return
    for batch in batches:
        click.echo(
            f"#{batch.id} {batch.entity_type.value:<12} {batch.file_name} "
            f"total={batch.records_total} new={batch.records_new} updated={batch.records_updated} "
            f"skipped={batch.records_skipped} failed={batch.records_failed}"
        )


@vista_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the reconciliation background worker."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not app.config.get("RECONCILE_WORKER_ENABLED"):
        click.echo(
            "Warning: RECONCILE_WORKER_ENABLED is false. Commands will still run, "
            "but uploads are processed inline until it is enabled.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list to consume.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """Start the Celery worker in the current process."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    app.extensions.get(EXTENSION_KEY, {})["worker_enabled"] = True

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    click.echo(f"Starting reconciliation worker (queues: {queues}, loglevel: {loglevel})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """Validate worker connectivity by executing the heartbeat task."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get("reconciliation.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'reconciliation.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc

    click.echo(json.dumps(payload, indent=2))


__all__ = ["get_disabled_vista_group", "vista_cli"]
