"""
Command-line interface for the agent runtime.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from agent_runtime.agent import AgentSession
from agent_runtime.config import RuntimeConfig
from agent_runtime.errors import AgentRuntimeError, CancellationError
from agent_runtime.events import (
    AwaitingConfirmationEvent,
    ContentEvent,
    ToolCallRequestEvent,
    ToolCallResultEvent,
)
from agent_runtime.logging import setup_logging
from agent_runtime.tools import create_tool_registry
from agent_runtime.tools.base import ToolConfirmationOutcome
from agent_runtime.turn import PendingConfirmation

console = Console()

CONFIG_PATHS = (
    Path.cwd() / "agent-runtime.yaml",
    Path.home() / ".config" / "agent-runtime" / "config.yaml",
)

_CHOICES = {
    "y": ToolConfirmationOutcome.PROCEED_ONCE,
    "a": ToolConfirmationOutcome.PROCEED_ALWAYS,
    "s": ToolConfirmationOutcome.PROCEED_ALWAYS_SERVER,
    "t": ToolConfirmationOutcome.PROCEED_ALWAYS_TOOL,
    "n": ToolConfirmationOutcome.CANCEL,
}


_SECRET_KEYS = frozenset({
    "api_key", "apikey", "token", "access_token", "refresh_token", "client_secret", "password",
})
# Every value under these mappings is shown masked
_SECRET_MAPS = frozenset({"custom_headers", "headers", "env"})


def mask_secrets(value: Any) -> Any:
    """Copy of a config document with credentials replaced by ``****``."""
    if isinstance(value, dict):
        masked = {}
        for key, item in value.items():
            name = str(key).lower()
            if name in _SECRET_MAPS and isinstance(item, dict):
                masked[key] = {k: "****" for k in item}
            elif name in _SECRET_KEYS and item:
                masked[key] = "****"
            else:
                masked[key] = mask_secrets(item)
        return masked
    if isinstance(value, list):
        return [mask_secrets(item) for item in value]
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Agent runtime CLI",
        prog="agent-runtime",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output (debug logging)",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        help="YAML config file",
    )
    parser.add_argument(
        "--auth-type",
        help="Backend to use (gemini-api-key, openai-compatible, anthropic, ...)",
    )
    parser.add_argument("-m", "--model", help="Model name")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    run_parser = subparsers.add_parser("run", help="Send one prompt and let the agent work")
    run_parser.add_argument("prompt", help="Prompt text")
    run_parser.add_argument(
        "-y",
        "--yes",
        action="store_true",
        help="Approve every tool call without asking",
    )

    subparsers.add_parser("tools", help="Discover and list available tools")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")
    config_subparsers.add_parser("show", help="Show the resolved configuration")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging("DEBUG" if args.verbose else "WARNING")

    try:
        if args.command == "run":
            asyncio.run(cmd_run(args))
        elif args.command == "tools":
            asyncio.run(cmd_tools(args))
        elif args.command == "config":
            cmd_config(args)
        else:
            parser.print_help()
    except (CancellationError, KeyboardInterrupt):
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except AgentRuntimeError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


def load_config(args: argparse.Namespace) -> tuple[RuntimeConfig, Path | None]:
    """Config file (explicit or first found), then environment overrides."""
    path = args.config
    if path is None:
        path = next((p for p in CONFIG_PATHS if p.exists()), None)
    base = RuntimeConfig.from_yaml(path) if path is not None else RuntimeConfig()
    config = RuntimeConfig.from_env(
        auth_type=getattr(args, "auth_type", None),
        model=getattr(args, "model", None),
        base=base,
    )
    return config, path


async def confirm_with_prompt(pending: PendingConfirmation) -> ToolConfirmationOutcome:
    """Ask on the terminal whether a gated call may run."""
    details = pending.details
    console.print(f"\n[bold yellow]{details.title}[/bold yellow]")
    if details.prompt:
        console.print(details.prompt, markup=False)
    choices = ["y", "a", "n"]
    if details.type == "mcp":
        choices = ["y", "s", "t", "n"]
    answer = await asyncio.to_thread(
        Prompt.ask,
        "Allow? (y=once, a=always, s=always for server, t=always for tool, n=no)",
        choices=choices,
        default="n",
        console=console,
    )
    return _CHOICES[answer]


async def cmd_run(args: argparse.Namespace) -> None:
    """Run one prompt through an agent session."""
    config, _ = load_config(args)
    config.validate()
    if args.yes:
        config.auto_approve = True

    async with await AgentSession.create(config, approver=confirm_with_prompt) as agent:
        async for event in agent.send_message_stream(args.prompt):
            if isinstance(event, ContentEvent):
                console.print(event.text, end="", markup=False, highlight=False)
            elif isinstance(event, ToolCallRequestEvent):
                request = event.request
                console.print(
                    f"\n[cyan]→ {request.name}[/cyan] [dim]{json.dumps(request.args)}[/dim]"
                )
            elif isinstance(event, AwaitingConfirmationEvent):
                console.print(f"[dim]  awaiting approval for {event.request.name}[/dim]")
            elif isinstance(event, ToolCallResultEvent):
                outcome = event.outcome
                if outcome.ok:
                    display = outcome.result.display if outcome.result else ""
                    console.print(f"[green]✓ {outcome.name}[/green]")
                    if display:
                        console.print(display[:2000], markup=False, style="dim")
                else:
                    console.print(f"[red]✗ {outcome.name}: {outcome.error}[/red]")
        console.print()
        if agent.finish_reason == "max_turns":
            console.print(f"[yellow]Stopped after {agent.turn_count} turns.[/yellow]")


async def cmd_tools(args: argparse.Namespace) -> None:
    """Discover and list tools."""
    config, _ = load_config(args)
    async with create_tool_registry(config) as registry:
        await registry.discover_tools()
        tools = registry.get_all_tools()

        table = Table(title="Available Tools")
        table.add_column("Name", style="cyan")
        table.add_column("Kind", style="dim")
        table.add_column("Confirm")
        table.add_column("Description")

        for tool in sorted(tools, key=lambda t: t.name):
            description = tool.description.splitlines()[0] if tool.description else ""
            table.add_row(
                tool.name,
                tool.kind,
                "yes" if tool.requires_confirmation else "",
                description[:60],
            )

        console.print(table)
        console.print(f"\n[dim]Total: {len(tools)} tools[/dim]")


def cmd_config(args: argparse.Namespace) -> None:
    """Configuration management commands."""
    if args.config_command == "show":
        _config_show(args)
    else:
        console.print("[yellow]Usage: agent-runtime config show[/yellow]")


def _config_show(args: argparse.Namespace) -> None:
    config, loaded_from = load_config(args)
    if loaded_from is None:
        console.print("[dim]No config file found. Using defaults and environment.[/dim]")
    else:
        console.print(f"[dim]Loaded from: {loaded_from}[/dim]\n")

    data = mask_secrets(config.to_dict())
    console.print("[bold]Current Configuration:[/bold]\n")
    console.print(yaml.dump(data, default_flow_style=False, sort_keys=False), markup=False)


if __name__ == "__main__":
    main()
