"""
CLI interface for the generation orchestrator.

Operator access to the database, credits, pricing and job runs.
"""

import json
import mimetypes
import sqlite3
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from ai_gen_orchestrator.config.loader import (
    OrchestratorConfig,
    load_cost_policy_file,
    load_orchestrator_config,
)
from ai_gen_orchestrator.config.logging import configure_logging
from ai_gen_orchestrator.core.errors import ErrorKind, GenerationError
from ai_gen_orchestrator.core.jobs import GenerationParams, InputAsset, JobStatus, PollingPolicy
from ai_gen_orchestrator.core.orchestrator import GenerationOrchestrator
from ai_gen_orchestrator.core.pricing import CostOptions, cost_policy_to_dict, resolve_cost
from ai_gen_orchestrator.core.registry import list_models, resolve_options
from ai_gen_orchestrator.storage.ledger import CreditLedger
from ai_gen_orchestrator.storage.models import JobLedgerRecord
from ai_gen_orchestrator.storage.repository import (
    CostPolicyStore,
    JobRecordRepository,
    initialize_schema,
)

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_STATUS_STYLES = {
    JobStatus.SUCCEEDED: "green",
    JobStatus.FAILED: "red",
    JobStatus.TIMED_OUT: "yellow",
}


def _config(ctx: typer.Context) -> OrchestratorConfig:
    return ctx.obj["config"]


def _db_path(ctx: typer.Context) -> str:
    return _config(ctx).database.path


def _parse_amount(value: str) -> Decimal:
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise typer.BadParameter(f"'{value}' is not a number")
    if amount <= 0:
        raise typer.BadParameter("amount must be > 0")
    return amount


def _no_database(exc: sqlite3.OperationalError) -> None:
    if "no such table" in str(exc).lower():
        console.print("\n[bold yellow]Database is not initialized[/]")
        console.print("Run `ai-gen-orchestrator init` first.\n")
        sys.exit(EXIT_CODE_FAIL)
    raise exc


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to orchestrator YAML configuration"
    ),
):
    """Generation orchestrator CLI."""
    try:
        config = load_orchestrator_config(str(config_path)) if config_path else OrchestratorConfig.default()
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    configure_logging(config.logging.level, config.logging.jsonl_path)
    ctx.obj = {"config": config}

    if ctx.invoked_subcommand is None:
        console.print("Generation Orchestrator - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the orchestrator database."""
    try:
        initialize_schema(_db_path(ctx))
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except sqlite3.Error as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(ctx: typer.Context):
    """Show database, pricing and provider key status."""
    config = _config(ctx)
    db_path = config.database.path

    if not Path(db_path).exists():
        console.print(f"[yellow]![/] Database not found at {db_path}; run `ai-gen-orchestrator init`")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Database: {db_path}")
    policy = CostPolicyStore(db_path).load()
    console.print(
        f"[green]✓[/] Pricing: {len(policy.video.models)} video / {len(policy.image.models)} image model entries"
    )
    try:
        config.kie.resolve_api_key()
        console.print(f"[green]✓[/] Provider key: {config.kie.api_key_env} is set")
    except ValueError:
        console.print(f"[yellow]![/] Provider key: {config.kie.api_key_env} is not set")


@app.command()
def models(
    kind: Optional[str] = typer.Option(None, "--kind", "-k", help="Filter by 'video' or 'image'")
):
    """List models and variants in the capability registry."""
    table = Table(title="Models")
    table.add_column("Model")
    table.add_column("Variant")
    table.add_column("Durations")
    table.add_column("Resolutions")
    table.add_column("Aspect ratios")

    for model in list_models(kind):
        for variant in model.variants:
            table.add_row(
                f"{model.id} ({model.kind})",
                variant.id,
                ", ".join(variant.durations) or "-",
                ", ".join(variant.resolutions) or "-",
                ", ".join(variant.aspect_ratios) or "-",
            )
    console.print(table)


@app.command()
def price(
    ctx: typer.Context,
    model_id: str = typer.Argument(..., help="Model identifier"),
    variant_id: str = typer.Argument(..., help="Variant identifier"),
    resolution: Optional[str] = typer.Option(None, "--resolution", "-r"),
    duration: Optional[str] = typer.Option(None, "--duration", "-d"),
):
    """Show the credit price of a generation."""
    try:
        model, variant, options = resolve_options(model_id, variant_id, duration=duration, resolution=resolution)
    except GenerationError as e:
        console.print(f"[red]Error:[/] {e.detail}")
        sys.exit(EXIT_CODE_FAIL)

    policy = CostPolicyStore(_db_path(ctx)).load()
    cost = resolve_cost(
        policy,
        model.kind,
        model.id,
        CostOptions(variant=variant.id, resolution=options["resolution"], duration=options["duration"]),
    )
    console.print(
        f"{model.display_name} / {variant.name} "
        f"({options['resolution'] or '-'}, {options['duration'] or '-'}): [bold]{cost}[/] credits"
    )


@app.command()
def grant(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User to credit"),
    amount: str = typer.Argument(..., help="Credits to add"),
    reason: str = typer.Option("Manual top-up", "--reason", help="Ledger description"),
    kind: str = typer.Option("topup", "--kind", help="purchase, bonus, refund or topup"),
):
    """Add credits to a user."""
    credits = _parse_amount(amount)
    ledger = CreditLedger(_db_path(ctx))
    try:
        ledger.add_credits(user_id, credits, reason, kind=kind)
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    except sqlite3.OperationalError as e:
        _no_database(e)

    console.print(f"[green]✓[/] Added {credits} credits to {user_id}; balance {ledger.get_balance(user_id)}")


@app.command()
def balance(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User to look up"),
):
    """Show a user's credit balance."""
    try:
        current = CreditLedger(_db_path(ctx)).get_balance(user_id)
    except sqlite3.OperationalError as e:
        _no_database(e)

    if current is None:
        console.print(f"[yellow]Unknown user:[/] {user_id}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"{user_id}: [bold]{current}[/] credits")


@app.command()
def transactions(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User to look up"),
    limit: int = typer.Option(20, "--limit", "-n"),
):
    """Show a user's ledger entries, newest first."""
    try:
        entries = CreditLedger(_db_path(ctx)).fetch_ledger_entries(user_id, limit=limit)
    except sqlite3.OperationalError as e:
        _no_database(e)

    if not entries:
        console.print(f"[dim]No transactions for {user_id}[/]")
        return

    table = Table(title=f"Transactions for {user_id}")
    table.add_column("When")
    table.add_column("Kind")
    table.add_column("Amount", justify="right")
    table.add_column("Description")
    table.add_column("Job")
    for entry in entries:
        style = "red" if entry.amount < 0 else "green"
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.kind,
            f"[{style}]{entry.amount:+}[/]",
            entry.description,
            entry.job_id or "-",
        )
    console.print(table)


@app.command()
def history(
    ctx: typer.Context,
    user_id: Optional[str] = typer.Option(None, "--user", "-u"),
    flagged: bool = typer.Option(
        False,
        "--flagged",
        help="Only jobs needing download retry, billing reconciliation, or that timed out"
    ),
    limit: int = typer.Option(20, "--limit", "-n"),
):
    """Show generation job history."""
    try:
        records = JobRecordRepository(_db_path(ctx)).fetch_job_history(
            user_id=user_id, flagged_only=flagged, limit=limit
        )
    except sqlite3.OperationalError as e:
        _no_database(e)

    if not records:
        console.print("[dim]No jobs found[/]")
        return

    table = Table(title="Generation jobs")
    table.add_column("Job")
    table.add_column("User")
    table.add_column("Model")
    table.add_column("Status")
    table.add_column("Cost", justify="right")
    table.add_column("Charged")
    table.add_column("Flags")
    for record in records:
        flags = []
        if record.needs_materialization_retry:
            flags.append("download")
        if record.needs_billing_reconciliation:
            flags.append("billing")
        if record.corrected:
            flags.append("corrected")
        style = _STATUS_STYLES.get(record.status, "white")
        table.add_row(
            record.id,
            record.user_id,
            f"{record.model_id}/{record.variant_id}",
            f"[{style}]{record.status.value}[/]",
            str(record.cost),
            "yes" if record.charged else "no",
            ", ".join(flags) or "-",
        )
    console.print(table)


@app.command()
def correct(
    ctx: typer.Context,
    job_id: str = typer.Argument(..., help="Job to correct"),
    new_status: str = typer.Argument(..., help="succeeded, failed or timed_out"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Failure detail"),
):
    """Apply the one allowed status correction to a recorded job."""
    try:
        target = JobStatus(new_status)
    except ValueError:
        raise typer.BadParameter(f"unknown status '{new_status}'")

    error_kind = ErrorKind.PROVIDER_FAILED if target is JobStatus.FAILED else None
    try:
        record = JobRecordRepository(_db_path(ctx)).correct_job_status(
            job_id, target, error_kind=error_kind, error_message=message
        )
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Job {record.id} is now {record.status.value}")


@app.command("pricing-export")
def pricing_export(
    ctx: typer.Context,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to file instead of stdout"),
):
    """Export the active cost policy as JSON."""
    policy = CostPolicyStore(_db_path(ctx)).load()
    text = json.dumps(cost_policy_to_dict(policy), indent=2, sort_keys=True)
    if output:
        output.write_text(text + "\n", encoding="utf-8")
        console.print(f"[green]✓[/] Cost policy written to {output}")
    else:
        print(text)


@app.command("pricing-import")
def pricing_import(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="YAML or JSON cost policy file"),
):
    """Validate and store a cost policy."""
    try:
        policy = load_cost_policy_file(str(path))
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid cost policy:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    try:
        CostPolicyStore(_db_path(ctx)).save(policy)
    except sqlite3.OperationalError as e:
        _no_database(e)
    console.print("[green]✓[/] Cost policy imported")


def _load_assets(paths: List[Path]) -> tuple:
    assets = []
    for path in paths:
        mime_type, _ = mimetypes.guess_type(path.name)
        if mime_type is None:
            raise typer.BadParameter(f"cannot determine the type of {path}")
        assets.append(InputAsset(mime_type=mime_type, data=path.read_bytes(), name=path.name))
    return tuple(assets)


def _display_record(record: JobLedgerRecord) -> None:
    style = _STATUS_STYLES.get(record.status, "white")
    console.print(f"\n[bold]Job[/bold] {record.id}")
    console.print(f"Status: [{style}]{record.status.value}[/]")
    console.print(f"Cost: {record.cost} credits ({'charged' if record.charged else 'not charged'})")
    if record.provider_task_id:
        console.print(f"Provider task: {record.provider_task_id}")
    if record.result_url:
        console.print(f"Result: {record.result_url}")
    if record.error_kind:
        console.print(f"[red]{record.error_kind.value}:[/] {record.error_message}")


@app.command()
def generate(
    ctx: typer.Context,
    user_id: str = typer.Option(..., "--user", "-u", help="User to bill"),
    model_id: str = typer.Option(..., "--model", "-m"),
    variant_id: str = typer.Option(..., "--variant", "-v"),
    prompt: str = typer.Option("", "--prompt", "-p"),
    negative_prompt: Optional[str] = typer.Option(None, "--negative-prompt"),
    resolution: Optional[str] = typer.Option(None, "--resolution", "-r"),
    duration: Optional[str] = typer.Option(None, "--duration", "-d"),
    aspect_ratio: Optional[str] = typer.Option(None, "--aspect-ratio", "-a"),
    images: List[Path] = typer.Option([], "--image", help="Input image file (repeatable)"),
    videos: List[Path] = typer.Option([], "--video", help="Input video file (repeatable)"),
    task_id: Optional[str] = typer.Option(None, "--task-id", help="Task to extend"),
    interval: Optional[float] = typer.Option(None, "--interval", help="Seconds between status checks"),
    max_attempts: Optional[int] = typer.Option(None, "--max-attempts", help="Status check limit"),
):
    """Run one generation job and wait for its result."""
    params = GenerationParams(
        prompt=prompt,
        negative_prompt=negative_prompt,
        resolution=resolution,
        duration=duration,
        aspect_ratio=aspect_ratio,
        images=_load_assets(images),
        videos=_load_assets(videos),
        continuation_task_id=task_id,
    )

    polling = None
    if interval is not None or max_attempts is not None:
        defaults = PollingPolicy()
        polling = PollingPolicy(
            interval_seconds=interval if interval is not None else defaults.interval_seconds,
            max_attempts=max_attempts if max_attempts is not None else defaults.max_attempts,
        )

    try:
        orchestrator = GenerationOrchestrator.from_config(_config(ctx))
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    try:
        with console.status("Submitting...") as spinner:
            def on_progress(attempt: int, total: int) -> None:
                spinner.update(f"Waiting for result (check {attempt}/{total})...")

            record = orchestrator.submit_generation_job(
                user_id, model_id, variant_id, params, polling=polling, on_progress=on_progress
            )
    except GenerationError as e:
        console.print(f"[red]Error:[/] {e.detail}")
        sys.exit(EXIT_CODE_FAIL)
    finally:
        orchestrator.close()

    _display_record(record)
    sys.exit(EXIT_CODE_PASS if record.succeeded else EXIT_CODE_FAIL)


if __name__ == "__main__":
    app()
