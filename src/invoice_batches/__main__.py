"""CLI entry point for invoice-batches."""

import logging
from datetime import timedelta
from pathlib import Path

import click

from .adapters.store import SqliteStore
from .config import Settings, load_settings
from .domain.exceptions import InvoiceBatchesError
from .domain.models import AlertStatus, Job
from .domain.sessions import group_sessions
from .services import Services, build_services

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def read_manifest(path: Path) -> list[str]:
    """Read document keys, one per line; blank lines and # comments skipped."""
    keys = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            keys.append(line)
    return keys


def format_job(job: Job) -> list[str]:
    lines = [
        f"{job.id}: {job.status.value}",
        f"  documents: {job.total_documents} total, {job.processed_count} processed, "
        f"{job.success_count} ok, {job.failure_count} failed, {job.blocked_count} blocked",
    ]
    if job.retried_document_count:
        lines.append(
            f"  retries: {job.retry_attempts} attempts on {job.retried_document_count} documents"
        )
    lines.append(f"  created: {job.created_at:%Y-%m-%d %H:%M:%S}")
    if job.completed_at:
        lines.append(f"  completed: {job.completed_at:%Y-%m-%d %H:%M:%S}")
    for error in job.errors:
        where = f" [{error.document_key}]" if error.document_key else ""
        lines.append(f"  ! {error.kind}{where}: {error.message}")
    return lines


def open_store(settings: Settings) -> SqliteStore:
    store = SqliteStore(settings.database.path)
    store.init_db()
    return store


def wire_services(settings: Settings) -> Services:
    try:
        return build_services(settings, store=open_store(settings))
    except InvoiceBatchesError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("-c", "--config", type=click.Path(exists=True), help="Config file path")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: str | None) -> None:
    """Invoice batches - reconcile and ingest extraction jobs."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config) if config else None


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the database schema."""
    settings = load_settings(ctx.obj["config_path"])
    open_store(settings)
    click.echo(f"Database ready: {settings.database.path}")


@cli.command()
@click.argument("job_id")
@click.argument("keys", nargs=-1)
@click.option(
    "-m", "--manifest", type=click.Path(exists=True, path_type=Path), help="File with one key per line"
)
@click.option("--blocked", default=0, type=click.IntRange(min=0), help="Documents blocked before submission")
@click.pass_context
def register(
    ctx: click.Context, job_id: str, keys: tuple[str, ...], manifest: Path | None, blocked: int
) -> None:
    """Record a submitted job and its document keys."""
    settings = load_settings(ctx.obj["config_path"])
    document_keys = list(keys)
    if manifest:
        document_keys.extend(read_manifest(manifest))
    if not document_keys:
        raise click.UsageError("No document keys given")

    job = open_store(settings).register_job(job_id, document_keys, blocked=blocked)
    click.echo(f"Registered {job.id} ({job.total_documents} documents)")


@cli.command()
@click.option("-j", "--job", "job_id", help="Reconcile a single job")
@click.pass_context
def reconcile(ctx: click.Context, job_id: str | None) -> None:
    """Poll active jobs and ingest completed ones."""
    settings = load_settings(ctx.obj["config_path"])
    services = wire_services(settings)

    if job_id:
        job = services.store.get_job(job_id)
        if job is None:
            raise click.ClickException(f"Unknown job {job_id}")
        job = services.reconciler.reconcile_job(job)
        for line in format_job(job):
            click.echo(line)
        return

    summary = services.reconciler.sweep()
    click.echo(
        f"Checked {summary.checked}: {summary.active} active, "
        f"{summary.completed} completed, {summary.failed} failed"
    )


@cli.command()
@click.argument("job_id", required=False)
@click.option("--limit", default=20, show_default=True, help="Jobs to list")
@click.pass_context
def status(ctx: click.Context, job_id: str | None, limit: int) -> None:
    """Show one job, or the most recent jobs."""
    settings = load_settings(ctx.obj["config_path"])
    store = open_store(settings)

    if job_id:
        job = store.get_job(job_id)
        if job is None:
            raise click.ClickException(f"Unknown job {job_id}")
        jobs = [job]
    else:
        jobs = store.list_jobs(limit=limit)

    if not jobs:
        click.echo("No jobs")
        return
    for job in jobs:
        for line in format_job(job):
            click.echo(line)


@cli.command()
@click.option("--window", type=int, help="Grouping window in minutes")
@click.option("--limit", type=int, help="Maximum sessions to show")
@click.pass_context
def sessions(ctx: click.Context, window: int | None, limit: int | None) -> None:
    """Show recent jobs grouped into upload sessions."""
    settings = load_settings(ctx.obj["config_path"])
    store = open_store(settings)
    window_minutes = window if window is not None else settings.sessions.window_minutes

    grouped = group_sessions(
        store.list_jobs(limit=500),
        window=timedelta(minutes=window_minutes),
        max_sessions=limit or settings.sessions.max_sessions,
    )
    if not grouped:
        click.echo("No sessions")
        return
    for session in grouped:
        click.echo(
            f"{session.id} {session.status.value} {session.created_at:%Y-%m-%d %H:%M} "
            f"jobs={len(session.job_ids)} docs={session.total_documents} "
            f"ok={session.success_count} failed={session.failure_count} errors={len(session.errors)}"
        )


@cli.command()
@click.option("-j", "--job", "job_id", help="Only invoices ingested by this job")
@click.pass_context
def invoices(ctx: click.Context, job_id: str | None) -> None:
    """List stored invoices, flagging totals mismatches."""
    settings = load_settings(ctx.obj["config_path"])
    found = open_store(settings).list_invoices(job_id)

    if not found:
        click.echo("No invoices")
        return
    for invoice in found:
        flag = "  MISMATCH" if invoice.has_totals_mismatch else ""
        click.echo(
            f"#{invoice.id} {invoice.code} provider {invoice.provider_id} "
            f"{invoice.issue_date} {invoice.total_amount}{flag}"
        )


@cli.command()
@click.option(
    "--status",
    "status_filter",
    type=click.Choice([s.value for s in AlertStatus], case_sensitive=False),
    help="Only alerts with this status",
)
@click.pass_context
def alerts(ctx: click.Context, status_filter: str | None) -> None:
    """List price alerts."""
    settings = load_settings(ctx.obj["config_path"])
    store = open_store(settings)
    found = store.list_alerts(AlertStatus(status_filter.upper()) if status_filter else None)

    if not found:
        click.echo("No alerts")
        return
    for alert in found:
        click.echo(
            f"#{alert.id} [{alert.status.value}] material {alert.material_id} provider "
            f"{alert.provider_id}: {alert.old_price} -> {alert.new_price} "
            f"({alert.percentage:+}%) on {alert.effective_date}"
        )


@cli.command()
@click.option("-p", "--provider", "provider_id", type=int, help="Only this provider")
@click.pass_context
def prices(ctx: click.Context, provider_id: int | None) -> None:
    """Show the latest known unit price per material and provider."""
    settings = load_settings(ctx.obj["config_path"])
    found = open_store(settings).list_latest_prices(provider_id)

    if not found:
        click.echo("No prices")
        return
    for price in found:
        click.echo(
            f"material {price.material_id} provider {price.provider_id}: "
            f"{price.unit_price} since {price.effective_date}"
        )


@cli.command("review-alert")
@click.argument("alert_id", type=int)
@click.argument("decision", type=click.Choice(["approve", "reject"], case_sensitive=False))
@click.pass_context
def review_alert(ctx: click.Context, alert_id: int, decision: str) -> None:
    """Approve or reject a price alert."""
    settings = load_settings(ctx.obj["config_path"])
    store = open_store(settings)
    new_status = AlertStatus.APPROVED if decision.lower() == "approve" else AlertStatus.REJECTED
    try:
        alert = store.review_alert(alert_id, new_status)
    except InvoiceBatchesError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Alert #{alert.id}: {alert.status.value}")


@cli.command()
@click.option("--host", help="Bind address (default from config)")
@click.option("--port", type=int, help="Port (default from config)")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the webhook and cron HTTP server."""
    import uvicorn

    from .api import create_app

    settings = load_settings(ctx.obj["config_path"])
    services = wire_services(settings)
    try:
        app = create_app(services=services)
    except InvoiceBatchesError as e:
        raise click.ClickException(str(e)) from e

    uvicorn.run(app, host=host or settings.server.host, port=port or settings.server.port)


if __name__ == "__main__":
    cli()
