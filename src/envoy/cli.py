"""Command-line interface for the Envoy agent.

Provides commands for configuration validation, chatting with the agent,
working through the approval queue and running the API server.

Usage:
    python -m envoy validate-config
    python -m envoy chat "What's on my calendar tomorrow?"
    python -m envoy pending
    python -m envoy approve <action-id>
    python -m envoy serve
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from rich.console import Console
from rich.table import Table

from envoy.config import ENV_OVERRIDES, config_path_from_env, validate_config_file
from envoy.core.logging import configure_logging

if TYPE_CHECKING:
    from envoy.services import EnvoyServices

console = Console()


async def _init_services() -> EnvoyServices:
    """Load config and build the agent components.

    Prints an actionable error message and calls sys.exit(1) on failure.
    """
    from envoy.config import get_config
    from envoy.core.errors import EnvoyError
    from envoy.services import build_services

    try:
        config = get_config()
    except EnvoyError as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Copy config/config.yaml.example to config/config.yaml and adjust it,\n"
            "or point [cyan]ENVOY_CONFIG_PATH[/cyan] at your config file."
        )
        sys.exit(1)

    return await build_services(config)


def _run(command: Callable[[EnvoyServices], Awaitable[None]]) -> None:
    """Run an async command body with initialized services."""

    async def _main() -> None:
        services = await _init_services()
        try:
            await command(services)
        finally:
            await services.aclose()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)


def _short_payload(payload: dict[str, Any], limit: int = 60) -> str:
    text = json.dumps(payload, default=str)
    return text if len(text) <= limit else text[: limit - 3] + "..."


@click.group()
@click.option("--debug", is_flag=True, help="Log at DEBUG level to the console")
def cli(debug: bool) -> None:
    """Envoy - personal assistant agent with approval-gated actions."""
    configure_logging(log_level="DEBUG" if debug else "WARNING", json_output=False)


@cli.command("validate-config")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Config file to check instead of ENVOY_CONFIG_PATH or config/config.yaml",
)
def validate_config(config_path: Path | None) -> None:
    """Check a config file and summarize the autonomy and approval settings.

    Exits 1 with the failing fields listed when the file does not validate.
    """
    target = config_path or config_path_from_env()
    console.print(f"Checking [cyan]{target}[/cyan]")

    is_valid, message = validate_config_file(target)
    marker = "[green]OK[/green]" if is_valid else "[red]FAILED[/red]"
    console.print(f"\n{marker} {message}")
    overridden = [name for name in ENV_OVERRIDES if os.environ.get(name)]
    if is_valid and overridden:
        console.print(f"[dim]environment overrides: {', '.join(overridden)}[/dim]")
    sys.exit(0 if is_valid else 1)


@cli.command("chat")
@click.argument("message")
@click.option(
    "--conversation",
    "conversation_id",
    default=None,
    help="Continue an existing conversation",
)
def chat(message: str, conversation_id: str | None) -> None:
    """Send MESSAGE to the agent and print its reply."""

    async def _chat(services: EnvoyServices) -> None:
        response = await services.orchestrator.process_message(message, conversation_id)

        console.print(f"\n{response.message}\n")
        for action in response.actions:
            color = {"executed": "green", "failed": "red"}.get(action.status, "yellow")
            console.print(
                f"  [{color}]{action.status}[/{color}] {action.action_type} "
                f"[dim]({action.id})[/dim]"
            )
        if response.style_score is not None:
            console.print(f"  [dim]style score: {response.style_score.overall}[/dim]")
        console.print(
            f"[dim]conversation {response.conversation_id} | "
            f"{response.tokens_used.total} tokens[/dim]"
        )

    _run(_chat)


@cli.command("pending")
def pending() -> None:
    """List actions waiting for approval, oldest first."""

    async def _pending(services: EnvoyServices) -> None:
        actions = await services.orchestrator.get_pending_actions()
        if not actions:
            console.print("No actions awaiting approval.")
            return

        table = Table(title=f"Pending actions ({len(actions)})")
        table.add_column("ID", style="cyan")
        table.add_column("Action")
        table.add_column("Domain")
        table.add_column("Created")
        table.add_column("Payload", style="dim")
        for action in actions:
            table.add_row(
                action.id,
                action.action_type,
                f"{action.domain} ({action.tier})",
                action.created_at.strftime("%Y-%m-%d %H:%M"),
                _short_payload(action.payload),
            )
        console.print(table)

    _run(_pending)


@cli.command("approve")
@click.argument("action_id")
def approve(action_id: str) -> None:
    """Approve and execute a pending action."""
    from envoy.core.errors import ActionNotPendingError

    async def _approve(services: EnvoyServices) -> None:
        try:
            response = await services.orchestrator.approve_action(action_id)
        except ActionNotPendingError as e:
            console.print(f"[yellow]{e}[/yellow]")
            sys.exit(1)

        if response.ok:
            console.print(f"[green]✓[/green] Executed {action_id}")
        else:
            console.print(f"[red]✗[/red] Execution failed: {response.error}")

    _run(_approve)


@cli.command("reject")
@click.argument("action_id")
def reject(action_id: str) -> None:
    """Reject a pending action without executing it."""

    async def _reject(services: EnvoyServices) -> None:
        if await services.orchestrator.reject_action(action_id):
            console.print(f"[green]✓[/green] Rejected {action_id}")
        else:
            console.print(f"[yellow]Action {action_id} not found or not pending[/yellow]")

    _run(_reject)


@cli.command("patterns")
def patterns() -> None:
    """Show approval history per action fingerprint."""

    async def _patterns(services: EnvoyServices) -> None:
        rows = await services.orchestrator.get_approval_patterns()
        if not rows:
            console.print("No approval history yet.")
            return

        table = Table(title="Approval patterns")
        table.add_column("Fingerprint", style="cyan")
        table.add_column("Streak", justify="right")
        table.add_column("Threshold", justify="right")
        table.add_column("Approved / Rejected", justify="right")
        table.add_column("Routine")
        for p in rows:
            table.add_row(
                p.fingerprint,
                str(p.consecutive_approvals),
                str(p.auto_execute_threshold),
                f"{p.total_approvals} / {p.total_rejections}",
                "[green]yes[/green]" if p.is_routine else "no",
            )
        console.print(table)

    _run(_patterns)


@cli.command("escalations")
@click.option("--accept", "accept_id", default=None, help="Accept the prompt with this ID")
@click.option("--dismiss", "dismiss_id", default=None, help="Dismiss the prompt with this ID")
def escalations(accept_id: str | None, dismiss_id: str | None) -> None:
    """List tier escalation prompts, or answer one."""

    async def _escalations(services: EnvoyServices) -> None:
        engine = services.escalation

        if accept_id or dismiss_id:
            prompt_id = accept_id or dismiss_id
            if await engine.record_response(prompt_id, accepted=bool(accept_id)):
                verb = "Accepted" if accept_id else "Dismissed"
                console.print(f"[green]✓[/green] {verb} {prompt_id}")
            else:
                console.print(f"[yellow]Prompt {prompt_id} not found or not pending[/yellow]")
            return

        await engine.check_for_escalations()
        prompts = await engine.get_active_prompts()
        if not prompts:
            console.print("No escalation prompts.")
            return

        for prompt in prompts:
            console.print(f"[cyan]{prompt.id}[/cyan] [bold]{prompt.domain}[/bold] {prompt.type}")
            console.print(f"  {prompt.message}")
            for preview in prompt.preview_actions:
                console.print(f"  [dim]- {preview}[/dim]")

    _run(_escalations)


@cli.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind")
@click.option("--port", default=8000, show_default=True, type=int, help="TCP port")
def serve(host: str, port: int) -> None:
    """Run the JSON API under uvicorn."""
    import uvicorn

    from envoy.web.app import create_app

    if host not in ("127.0.0.1", "localhost", "::1"):
        console.print(
            f"[yellow]Warning:[/yellow] the API has no authentication and {host} "
            "may be reachable from other machines."
        )

    configure_logging(log_level="INFO", json_output=True)
    console.print(f"Envoy API listening on [cyan]http://{host}:{port}/api[/cyan]")
    uvicorn.run(create_app(), host=host, port=port, log_level="info")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
