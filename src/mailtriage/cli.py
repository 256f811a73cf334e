"""Command-line interface for mail triage.

Provides commands for configuration validation, single-message and batch
classification, and inspecting the rule policy.

Usage:
    python -m mailtriage validate-config
    python -m mailtriage classify --subject "Team sync" --sender alice@corp.com --body "..."
    python -m mailtriage batch messages.json --output results.json
    python -m mailtriage rules
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
import yaml
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from mailtriage.classifier.ai_client import create_completion_client
from mailtriage.classifier.models import InboundMessage
from mailtriage.classifier.orchestrator import EmailClassifier
from mailtriage.classifier.rules import RulePolicy
from mailtriage.config import get_config, validate_config_file
from mailtriage.core.errors import ConfigLoadError, ConfigValidationError
from mailtriage.core.logging import configure_logging
from mailtriage.engine.batch import ThroughputGovernor
from mailtriage.engine.calendar import calendar_event_for

if TYPE_CHECKING:
    from mailtriage.classifier.models import ClassificationResult
    from mailtriage.config_schema import AppConfig

console = Console()
# Progress and summaries go to stderr so JSON on stdout stays clean
err_console = Console(stderr=True)

PRIORITY_STYLES = {"high": "red", "medium": "yellow", "low": "green"}


def _load_config_or_exit() -> AppConfig:
    """Load config, printing an actionable error and exiting on failure.

    Applies the configured log settings unless --debug was given.
    """
    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        err_console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Fix config/config.yaml (or MAILTRIAGE_CONFIG_PATH) and run "
            "[cyan]mailtriage validate-config[/cyan]."
        )
        sys.exit(1)

    ctx = click.get_current_context(silent=True)
    if not (ctx and ctx.find_root().params.get("debug")):
        configure_logging(
            log_level=config.logging.level,
            json_output=config.logging.json_output,
            stream=sys.stderr,
        )
    return config


def _result_record(message: InboundMessage, result: ClassificationResult) -> dict[str, Any]:
    return {"id": message.id, **result.to_dict(), "method": result.method}


def _load_messages(path: Path) -> list[InboundMessage]:
    """Read a JSON or YAML list of message records.

    A mapping with a top-level 'messages' list is accepted too.
    """
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)

    if isinstance(data, dict):
        data = data.get("messages")
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a list of messages")

    messages = []
    for index, record in enumerate(data):
        if not isinstance(record, dict):
            raise ValueError(f"Message #{index + 1} in {path} is not a mapping")
        messages.append(InboundMessage.from_dict(record))
    return messages


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """Mail triage - rule and model based email classification."""
    log_level = "DEBUG" if debug else "WARNING"
    # Logs go to stderr so JSON results on stdout stay parseable
    configure_logging(log_level=log_level, json_output=False, stream=sys.stderr)


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file.

    Checks that config.yaml exists and passes Pydantic schema validation.
    Reports specific errors for invalid fields.
    """
    if config_path:
        console.print(f"Validating config: [cyan]{config_path}[/cyan]")
    else:
        console.print("Validating config: [cyan]config/config.yaml[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(1)


@cli.command("classify")
@click.option("--subject", required=True, help="Subject line")
@click.option("--sender", default="", help='Sender, e.g. "Alice <alice@corp.com>"')
@click.option("--body", default=None, help="Body text (plain or HTML)")
@click.option(
    "--body-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read the body from a file",
)
@click.option("--id", "message_id", default="cli", help="Message id used for logging")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
def classify(
    subject: str,
    sender: str,
    body: str | None,
    body_file: Path | None,
    message_id: str,
    as_json: bool,
) -> None:
    """Classify a single email and print the result."""
    if body is not None and body_file is not None:
        raise click.UsageError("Use either --body or --body-file, not both")

    text = body_file.read_text(encoding="utf-8") if body_file else (body or "")
    config = _load_config_or_exit()
    message = InboundMessage(id=message_id, subject=subject, sender=sender, body=text)

    try:
        result = asyncio.run(_classify_one(config, message))
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)

    if as_json:
        click.echo(json.dumps(_result_record(message, result), indent=2))
        return

    _print_result(message, result, config)


async def _classify_one(config: AppConfig, message: InboundMessage) -> ClassificationResult:
    """Async implementation of classify command."""
    client = create_completion_client(config.ai)
    try:
        classifier = EmailClassifier.from_config(config, client=client)
        return await classifier.classify(message)
    finally:
        await client.aclose()


def _print_result(message: InboundMessage, result: ClassificationResult, config: AppConfig) -> None:
    style = PRIORITY_STYLES.get(result.priority, "white")

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Subject", escape(result.subject) or "[dim](none)[/dim]")
    table.add_row("Priority", f"[{style}]{result.priority}[/{style}]")
    table.add_row("Summary", escape(result.summary))
    table.add_row("Action", escape(result.action or "") or "[dim]-[/dim]")
    table.add_row("Due date", result.due_date.isoformat() if result.due_date else "[dim]-[/dim]")
    table.add_row("Due time", result.due_time or "[dim]-[/dim]")
    table.add_row("Method", f"[dim]{result.method}[/dim]")
    console.print(table)

    event = calendar_event_for(
        message, result, config.timezone, policy=RulePolicy.from_config(config.rules)
    )
    if event:
        console.print(
            f"\n[cyan]Calendar event:[/cyan] {escape(event.summary)} "
            f"{event.start:%Y-%m-%d %H:%M}-{event.end:%H:%M} ({event.timezone})"
        )


@cli.command("batch")
@click.argument(
    "input_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--output",
    "-o",
    "output_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write results JSON here (default: stdout)",
)
def batch(input_file: Path, output_path: Path | None) -> None:
    """Classify a JSON or YAML list of messages through the throughput governor.

    Messages need an 'id' and may carry 'subject', 'sender' (or 'from') and
    'body' (or 'snippet'). Results keep the input order.
    """
    try:
        messages = _load_messages(input_file)
    except (ValueError, yaml.YAMLError) as e:
        err_console.print(f"[red]Input error:[/red] {e}")
        sys.exit(1)

    config = _load_config_or_exit()

    try:
        records = asyncio.run(_run_batch(config, messages))
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)

    payload = json.dumps(records, indent=2)
    if output_path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(payload + "\n", encoding="utf-8")
        err_console.print(f"Wrote [cyan]{len(records)}[/cyan] results to [cyan]{output_path}[/cyan]")
    else:
        click.echo(payload)


async def _run_batch(config: AppConfig, messages: list[InboundMessage]) -> list[dict[str, Any]]:
    """Async implementation of batch command."""
    client = create_completion_client(config.ai)
    try:
        classifier = EmailClassifier.from_config(config, client=client)
        governor = ThroughputGovernor.from_config(config, classifier)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=err_console,
        ) as progress:
            task = progress.add_task("Classifying...", total=len(messages))

            def on_progress(done: int, total: int) -> None:
                progress.update(task, completed=done, description=f"Classifying {done}/{total}...")

            results = await governor.process_batch(messages, on_progress=on_progress)
    finally:
        await client.aclose()

    summary = governor.last_summary
    if summary is not None:
        priorities = ", ".join(f"{k}={v}" for k, v in sorted(summary.by_priority.items()))
        methods = ", ".join(f"{k}={v}" for k, v in sorted(summary.by_method.items()))
        err_console.print(
            f"\n[bold]Batch Summary[/bold] (batch {summary.batch_id[:8]}...)\n"
            f"  Messages:    {summary.total}\n"
            f"  Cache hits:  {summary.cache_hits}\n"
            f"  Failed:      {summary.failed}\n"
            f"  Priorities:  {priorities or '-'}\n"
            f"  Methods:     {methods or '-'}\n"
            f"  Duration:    {summary.duration_ms}ms"
        )

    return [_result_record(message, result) for message, result in zip(messages, results, strict=True)]


@cli.command("rules")
def rules() -> None:
    """Print the active rule policy table."""
    config = _load_config_or_exit()
    policy = RulePolicy.from_config(config.rules)

    console.print(f"[bold]Rule policy[/bold] version [cyan]{policy.version}[/cyan]\n")

    table = Table(box=None, padding=(0, 2))
    table.add_column("Rule set", style="cyan", no_wrap=True)
    table.add_column("Verdict", no_wrap=True)
    table.add_column("Rule", no_wrap=True)
    table.add_column("Pattern", style="dim", overflow="fold")
    for row in policy.describe():
        table.add_row(row["rule_set"], row["verdict"], row["rule"], row["pattern"])
    console.print(table)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
