"""Command-line interface for the action agent.

Provides commands for configuration validation, database setup, one-off
extraction, invite codes, and the HTTP server.

Usage:
    python -m action_agent validate-config
    python -m action_agent init-db
    python -m action_agent extract --channel Gmail --input message.json
    python -m action_agent invite create --count 5
    python -m action_agent serve
"""

from __future__ import annotations

import asyncio
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from rich.console import Console
from rich.table import Table

from action_agent.config import validate_config_file
from action_agent.core.logging import configure_logging

if TYPE_CHECKING:
    import anthropic

    from action_agent.agent.extractor import ActionExtractor
    from action_agent.agent.models import ActionRecord
    from action_agent.config_schema import AppConfig
    from action_agent.db.store import DatabaseStore

console = Console()


@dataclass(frozen=True, slots=True)
class CLIDeps:
    """Shared dependencies initialized by _init_cli_deps()."""

    config: AppConfig
    store: DatabaseStore
    anthropic_client: anthropic.Anthropic | None
    extractor: ActionExtractor | None


async def _init_cli_deps(with_model: bool = False) -> CLIDeps:
    """Initialize shared CLI dependencies.

    Loads config and initializes the database; with `with_model`, also the
    Anthropic client and extractor. Prints actionable error messages and
    calls sys.exit(1) on failure.
    """
    import anthropic as anthropic_mod

    from action_agent.agent.extractor import ActionExtractor
    from action_agent.config import get_config
    from action_agent.core.errors import ConfigLoadError, ConfigValidationError
    from action_agent.db.store import DatabaseStore

    # 1. Load config
    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Fix config/config.yaml (see config/config.yaml.example) "
            "or point ACTION_AGENT_CONFIG_PATH at a valid file."
        )
        sys.exit(1)

    # 2. Initialize database
    store = DatabaseStore(Path(config.database.path))
    await store.initialize()

    # 3. Initialize Anthropic client and extractor
    anthropic_client = None
    extractor = None
    if with_model:
        anthropic_client = anthropic_mod.Anthropic(
            max_retries=config.anthropic.max_retries,
            timeout=config.anthropic.timeout_seconds,
        )
        extractor = ActionExtractor(anthropic_client=anthropic_client, config=config, store=store)

    return CLIDeps(
        config=config,
        store=store,
        anthropic_client=anthropic_client,
        extractor=extractor,
    )


def _run(coro: Any) -> None:
    """Run an async command with the CLI's standard interrupt/error handling."""
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """Action agent - turn inbound messages into prioritized actions."""
    log_level = "DEBUG" if debug else "INFO"
    # Use human-readable output for CLI, JSON for server
    configure_logging(log_level=log_level, json_output=False)


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


@cli.command("init-db")
def init_db() -> None:
    """Create the SQLite database and all tables."""
    _run(_run_init_db())


async def _run_init_db() -> None:
    from action_agent.db.models import verify_schema

    deps = await _init_cli_deps()
    if not await verify_schema(deps.store.db_path):
        console.print(f"[red]✗[/red] Schema incomplete at {deps.store.db_path}")
        sys.exit(1)
    console.print(f"[green]✓[/green] Database ready at [cyan]{deps.store.db_path}[/cyan]")


@cli.command("extract")
@click.option("--channel", required=True, help="Channel label (e.g. Gmail, Notion)")
@click.option(
    "--input",
    "input_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="File with the raw message (JSON, or plain text)",
)
@click.option("--user", "user_id", default=None, help="Stored user whose profile to use")
@click.option("--save", is_flag=True, help="Store the action as a memory (requires --user)")
@click.option("--ref-id", default=None, help="Provider message ID (defaults to the input's 'id')")
def extract(
    channel: str,
    input_path: Path,
    user_id: str | None,
    save: bool,
    ref_id: str | None,
) -> None:
    """Extract one action from a raw message and print it.

    With --save, the action is stored for --user via the ingest pipeline
    (already-ingested messages are skipped).
    """
    if save and not user_id:
        raise click.UsageError("--save requires --user")
    _run(_run_extract(channel, input_path, user_id, save, ref_id))


async def _run_extract(
    channel: str,
    input_path: Path,
    user_id: str | None,
    save: bool,
    ref_id: str | None,
) -> None:
    """Async implementation of extract command."""
    from action_agent.agent.models import UserProfile
    from action_agent.agent.pipeline import run_action_agent
    from action_agent.engine.ingest import IngestService

    raw_input = _read_input(input_path)
    deps = await _init_cli_deps(with_model=True)

    if user_id:
        service = IngestService(extractor=deps.extractor, store=deps.store)
        result = await service.ingest(
            user_id=user_id,
            channel=channel,
            raw_input=raw_input,
            ref_id=ref_id,
            save=save,
        )
        if result.status == "skipped":
            console.print(f"[yellow]Already ingested:[/yellow] {result.channel}/{result.ref_id}")
            return
        _print_action(result.action, result.estimate)
        if result.memory_id:
            console.print(f"\nStored as memory [cyan]{result.memory_id}[/cyan]")
        return

    outcome = await run_action_agent(
        channel=channel,
        raw_input=raw_input,
        profile=UserProfile(user_id="cli"),
        extractor=deps.extractor,
        ref_id=ref_id,
    )
    _print_action(outcome.action, outcome.estimate)


def _read_input(path: Path) -> Any:
    """Load a JSON document if the file holds one, otherwise its text."""
    text = path.read_text(encoding="utf-8")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _print_action(action: ActionRecord | None, estimate: int) -> None:
    if action is None:
        console.print("[yellow]No content to extract.[/yellow] Estimate: 0")
        return

    table = Table(title="Extracted Action", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Text", action.text)
    table.add_row("Summary", action.summary)
    table.add_row("Keywords", ", ".join(action.keywords))
    table.add_row("Suggestions", "\n".join(action.suggestion_list()))
    table.add_row("Labels", ", ".join(action.labels) or "-")
    table.add_row("Importance", str(action.importance_rating))
    table.add_row("Estimate", str(estimate))
    console.print(table)


@cli.group("invite")
def invite() -> None:
    """Manage invite codes."""


@invite.command("create")
@click.option("--count", default=1, type=click.IntRange(1, 500), help="Number of codes")
@click.option("--identifier", default=None, help="Tag stored with the codes (e.g. campaign)")
def invite_create(count: int, identifier: str | None) -> None:
    """Generate new invite codes."""
    _run(_run_invite_create(count, identifier))


async def _run_invite_create(count: int, identifier: str | None) -> None:
    deps = await _init_cli_deps()
    codes = await deps.store.create_invite_codes(
        count=count,
        code_length=deps.config.invite_codes.code_length,
        expire_after_days=deps.config.invite_codes.expire_after_days,
        identifier=identifier,
    )

    table = Table(title=f"Invite Codes ({len(codes)})")
    table.add_column("Code", style="green")
    table.add_column("Expires")
    for code in codes:
        table.add_row(
            code.code,
            code.expires_at.strftime("%Y-%m-%d") if code.expires_at else "never",
        )
    console.print(table)


@invite.command("redeem")
@click.argument("code")
@click.option("--user", "user_id", default=None, help="Redeeming user ID")
def invite_redeem(code: str, user_id: str | None) -> None:
    """Redeem an invite code."""
    _run(_run_invite_redeem(code, user_id))


async def _run_invite_redeem(code: str, user_id: str | None) -> None:
    from action_agent.core.errors import InviteCodeError

    code = code.strip().upper()
    deps = await _init_cli_deps()
    try:
        await deps.store.redeem_invite_code(code, user_id=user_id)
    except InviteCodeError as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)
    console.print(f"[green]✓[/green] Redeemed [cyan]{code}[/cyan]")


@cli.command("serve")
@click.option(
    "--host",
    default="127.0.0.1",
    help="Host to bind to (default: localhost only for security)",
)
@click.option(
    "--port",
    default=8000,
    type=int,
    help="Port to bind to",
)
def serve(host: str, port: int) -> None:
    """Start the HTTP API server."""
    import uvicorn

    from action_agent.web.app import create_app

    if host == "0.0.0.0":  # noqa: S104
        console.print(
            "[yellow]Warning:[/yellow] Binding to 0.0.0.0 exposes the server to the network.\n"
            "This API has no authentication. Use 127.0.0.1 for local-only access."
        )

    configure_logging(log_level="INFO", json_output=True)

    app = create_app()
    console.print(f"Starting server on [cyan]http://{host}:{port}[/cyan]")
    uvicorn.run(app, host=host, port=port, log_level="info")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
