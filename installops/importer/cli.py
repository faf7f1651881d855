"""
CLI commands for the partner importer (``flask importer ...``).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo

from installops.importer.celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from installops.importer.errors import PartnerImportError
from installops.importer.mapping.profiles import MappingLoadError, apply_profile_spec, load_profile_spec
from installops.importer.contracts import get_partner_job_field_specs
from installops.importer.pipeline import (
    DeleteJobsRequest,
    ImportRunService,
    PartnerImportRequest,
    PartnerImportResult,
    RunFilters,
    audit_partner_import,
    delete_partner_jobs,
    run_partner_import,
)
from installops.models import ImportProfile, User, db
from installops.utils.importer import is_importer_enabled


@click.group(name="importer", invoke_without_command=True)
@click.pass_context
def importer_cli(ctx):
    """
    Partner import commands.

    Lists the configured import profiles when invoked without a subcommand.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_importer_enabled(app):
        raise click.ClickException(
            "Importer is disabled via IMPORTER_ENABLED=false. Enable it to run importer CLI commands."
        )
    if ctx.invoked_subcommand is None:
        profiles = db.session.query(ImportProfile).order_by(ImportProfile.id).all()
        if not profiles:
            click.echo("No import profiles configured.")
            return
        click.echo("Import profiles:")
        for profile in profiles:
            state = "active" if profile.is_active else "inactive"
            partner_name = profile.partner.name if profile.partner else "?"
            click.echo(f"  [{profile.id}] {partner_name} / {profile.name} ({profile.source_type}, {state})")


def get_disabled_importer_group() -> click.Group:
    """
    Return a minimal command group that informs the operator the importer is disabled.
    """

    @click.group(name="importer", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Importer commands are unavailable because IMPORTER_ENABLED=false.")

    return disabled_group


def _resolve_celery(app) -> Celery:
    """
    Retrieve the registered Celery instance, raising a helpful error if missing.
    """
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Importer Celery app is unavailable. Ensure IMPORTER_ENABLED=true and the "
            "importer package initialises before running worker commands."
        )
    return celery_app


def _read_csv(csv_path: Optional[Path]) -> Optional[str]:
    if csv_path is None:
        return None
    return csv_path.read_text(encoding="utf-8")


def _format_summary(result: PartnerImportResult) -> str:
    counts = result.counts
    chunk = result.chunk_info
    lines = [
        f"Run {result.run_id} for {result.partner_name} (dry_run={result.dry_run}).",
        f"  rows           : {chunk.get('start_row', 0)}-{chunk.get('end_row', 0)} of {chunk.get('total_rows', 0)}",
        f"  processed      : {counts['processed']}",
        f"  inserted       : {counts['inserted']}",
        f"  updated        : {counts['updated']}",
        f"  skipped        : {counts['skipped']}",
        f"  duplicates     : {counts['duplicates']}",
        f"  warnings       : {counts['warnings']}",
        f"  errors         : {counts['errors']}",
    ]
    if chunk.get("has_more"):
        lines.append(f"  next_start_row : {chunk.get('next_start_row')}")
    return "\n".join(lines)


@importer_cli.command("run")
@click.option("--profile-id", required=True, type=int, help="Import profile to run.")
@click.option(
    "--csv",
    "csv_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="Read rows from a CSV file instead of the profile's Google Sheet.",
)
@click.option("--dry-run", is_flag=True, help="Compute results without writing clients, orders or the run log.")
@click.option("--start-row", default=0, show_default=True, type=int, help="0-based data row offset.")
@click.option("--max-rows", type=int, help="Maximum data rows to process (defaults to IMPORTER_CHUNK_SIZE).")
@click.option("--job-id", "job_ids", multiple=True, help="Only process these partner job ids (repeatable).")
@click.option(
    "--inline/--no-inline",
    default=False,
    help="Run inline within the CLI process instead of queueing via Celery.",
)
@click.option(
    "--summary-json",
    is_flag=True,
    help="Emit the full result payload as JSON after completion (inline runs only).",
)
@click.pass_context
def importer_run(
    ctx,
    profile_id: int,
    csv_path: Optional[Path],
    dry_run: bool,
    start_row: int,
    max_rows: Optional[int],
    job_ids: tuple[str, ...],
    inline: bool,
    summary_json: bool,
):
    """Import partner jobs for an import profile."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if summary_json and not inline:
        raise click.ClickException("--summary-json is only available for --inline runs.")

    payload: dict[str, Any] = {
        "profile_id": profile_id,
        "dry_run": dry_run,
        "csv_data": _read_csv(csv_path),
        "start_row": start_row,
        "max_rows": max_rows,
        "job_ids_filter": list(job_ids) or None,
    }
    try:
        request = PartnerImportRequest.from_payload(payload)
    except PartnerImportError as exc:
        raise click.ClickException(exc.message) from exc

    if not inline:
        celery_app = _resolve_celery(app)
        try:
            async_result = celery_app.send_task("importer.partner_import", kwargs={"payload": payload})
        except Exception as exc:  # pragma: no cover - broker failures vary by transport
            raise click.ClickException(f"Failed to enqueue partner import for profile {profile_id}: {exc}") from exc

        app.logger.info(
            "Partner import queued via CLI",
            extra={
                "importer_profile_id": profile_id,
                "importer_task_id": async_result.id,
                "importer_dry_run": dry_run,
            },
        )
        click.echo(json.dumps({"task_id": async_result.id, "status": "queued", "profile_id": profile_id, "dry_run": dry_run}))
        return

    try:
        result = run_partner_import(request)
    except PartnerImportError as exc:
        db.session.rollback()
        raise click.ClickException(exc.message) from exc

    click.echo(_format_summary(result))
    if summary_json:
        click.echo(json.dumps(result.as_dict(), indent=2, sort_keys=True, default=str))


@importer_cli.command("audit")
@click.option("--profile-id", required=True, type=int, help="Import profile to audit.")
@click.option(
    "--csv",
    "csv_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="Audit a CSV file instead of the profile's Google Sheet.",
)
@click.pass_context
def importer_audit(ctx, profile_id: int, csv_path: Optional[Path]):
    """Compare a partner sheet against the orders already imported."""
    ctx.ensure_object(ScriptInfo).load_app()
    try:
        result = audit_partner_import(profile_id, csv_data=_read_csv(csv_path))
    except PartnerImportError as exc:
        raise click.ClickException(exc.message) from exc
    click.echo(json.dumps(result.as_dict(), indent=2, sort_keys=True))


@importer_cli.command("delete-jobs")
@click.option("--partner-id", required=True, type=int, help="Partner whose imported orders are deleted.")
@click.option("--run-id", "import_run_id", help="Only delete orders written by this import run.")
@click.option("--dry-run", is_flag=True, help="Count matching orders without deleting them.")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
def importer_delete_jobs(ctx, partner_id: int, import_run_id: Optional[str], dry_run: bool, yes: bool):
    """Delete imported partner orders, e.g. to undo an import run."""
    ctx.ensure_object(ScriptInfo).load_app()
    payload = {"partner_id": partner_id, "import_run_id": import_run_id, "dry_run": True}
    try:
        result = delete_partner_jobs(DeleteJobsRequest.from_payload(payload))
        if not dry_run:
            if result.stats["orders"] and not yes:
                click.confirm(f"Delete {result.stats['orders']} imported orders?", abort=True)
            result = delete_partner_jobs(DeleteJobsRequest.from_payload({**payload, "dry_run": False}))
    except PartnerImportError as exc:
        raise click.ClickException(exc.message) from exc
    click.echo(json.dumps(result.as_dict(), indent=2, sort_keys=True))


@importer_cli.command("fields")
def importer_fields():
    """List the partner job fields and the sheet headers recognised for each."""
    for spec in get_partner_job_field_specs():
        click.echo(f"{spec.name}: {spec.description}")
        click.echo(f"    headers: {', '.join(spec.headers())}")


@importer_cli.command("runs")
@click.option("--partner-id", type=int, help="Only show runs for this partner.")
@click.option("--profile-id", type=int, help="Only show runs for this profile.")
@click.option("--limit", default=20, show_default=True, type=int, help="Number of runs to show.")
@click.pass_context
def importer_runs(ctx, partner_id: Optional[int], profile_id: Optional[int], limit: int):
    """List recent import runs, newest first."""
    ctx.ensure_object(ScriptInfo).load_app()
    try:
        filters = RunFilters.coerce(page=1, page_size=limit, partner_id=partner_id, profile_id=profile_id)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    listing = ImportRunService().list_runs(filters)
    if not listing.items:
        click.echo("No import runs recorded.")
        return
    for run in listing.items:
        created = run.created_at.isoformat() if run.created_at else "-"
        click.echo(
            f"{run.run_id}  {created}  partner={run.partner_name}  inserted={run.inserted} "
            f"updated={run.updated} skipped={run.skipped} errors={run.errors}"
        )


@importer_cli.command("load-profile")
@click.argument("path", type=click.Path(path_type=Path, exists=True, dir_okay=False))
@click.pass_context
def importer_load_profile(ctx, path: Path):
    """Create or update an import profile from a YAML file."""
    ctx.ensure_object(ScriptInfo).load_app()
    try:
        spec = load_profile_spec(path)
    except MappingLoadError as exc:
        raise click.ClickException(str(exc)) from exc

    profile, created = apply_profile_spec(spec)
    action = "Created" if created else "Updated"
    click.echo(f"{action} import profile {profile.id} ({spec.partner_slug} / {spec.name}).")


@importer_cli.command("create-admin")
@click.option("--email", required=True, help="Admin email address.")
@click.option("--name", "full_name", default=None, help="Display name.")
@click.pass_context
def importer_create_admin(ctx, email: str, full_name: Optional[str]):
    """Create (or re-key) an admin user and print a new API token."""
    ctx.ensure_object(ScriptInfo).load_app()
    normalized = email.strip().lower()
    user = db.session.query(User).filter(User.email == normalized).one_or_none()
    if user is None:
        user = User(email=normalized, full_name=full_name, is_admin=True, is_active=True)
    else:
        user.is_admin = True
        if full_name:
            user.full_name = full_name
    token = user.issue_api_token()
    db.session.commit()
    click.echo(f"API token for {normalized} (shown once):")
    click.echo(token)


@importer_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the importer background worker."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    state = app.extensions.get("importer", {})
    if not state.get("worker_enabled") and not app.config.get("IMPORTER_WORKER_ENABLED"):
        click.echo(
            "Warning: IMPORTER_WORKER_ENABLED is false. Commands will still run, "
            "but enable the flag to surface accurate health status.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option(
    "--queues",
    default=DEFAULT_QUEUE_NAME,
    show_default=True,
    help="Comma-separated queue list to consume.",
)
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """
    Start the Celery worker in the current process.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)

    state = app.extensions.get("importer")
    if state is not None:
        state["worker_enabled"] = True

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    pool_msg = f", pool: {pool}" if pool else ""
    click.echo(f"Starting importer worker (queues: {queues}, loglevel: {loglevel}{pool_msg})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """
    Validate worker connectivity by executing the heartbeat task.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get("importer.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'importer.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    except Exception as exc:  # pragma: no cover - surfacing unexpected errors
        raise click.ClickException(f"Worker ping failed: {exc}") from exc

    click.echo(json.dumps(payload, indent=2))
