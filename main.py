#!/usr/bin/env python3
"""
Meraki MCP Gateway
==================

Command-line entry point for the request-execution pipeline.

Usage:
    python main.py tools                          # List tool definitions
    python main.py call organizations_list        # Invoke one operation
    python main.py call network_clients_list networkId=N_1 perPage=10
    python main.py --help                         # Show help

The API key is read from MERAKI_API_KEY.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List

# Ensure project root is in path
sys.path.insert(0, str(Path(__file__).parent))

from rich.console import Console
from rich.table import Table

from core.errors import ConfigurationError
from infra.logging import configure_logging, parse_level
from infra.settings import Settings, load_settings
from tools.executor import ExecutionContext, create_executor


# Results go to stdout, logs to stderr
console = Console()


def parse_call_args(pairs: List[str]) -> Dict[str, str]:
    """Parse `key=value` arguments; values stay strings for coercion."""
    params: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected key=value, got: {pair}")
        params[key] = value
    return params


def print_tools(context: ExecutionContext) -> None:
    """Print the tool catalog with approval requirements."""
    table = Table(title=f"Tools ({len(context.registry)})")
    table.add_column("Name", style="cyan")
    table.add_column("Method")
    table.add_column("Category", style="dim")
    table.add_column("Approval")

    for tool in context.registry.list_tools():
        decision = context.policy.check(tool.name)
        table.add_row(
            tool.name,
            tool.method.value,
            tool.category,
            "[green]auto[/green]" if decision.approved else "[yellow]required[/yellow]",
        )

    console.print(table)


async def run_call(settings: Settings, name: str, params: Dict[str, str]) -> int:
    """Invoke one tool and print the result envelope as JSON."""
    executor = create_executor(settings)
    try:
        outcome = await executor.invoke(name, params)
    finally:
        await executor.context.aclose()

    console.print_json(json.dumps(outcome, default=str))
    return 0 if outcome["ok"] else 1


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Meraki MCP Gateway - rate-limited Dashboard API tools"
    )
    parser.add_argument(
        "--settings", "-s",
        default=None,
        help="Path to a settings file (JSON or YAML)"
    )
    parser.add_argument(
        "--log-level", "-l",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides the settings file)"
    )
    parser.add_argument(
        "--log-file",
        action="store_true",
        help="Also write JSON logs to ./logs"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("tools", help="List available tools")
    call_parser = subparsers.add_parser("call", help="Invoke a tool")
    call_parser.add_argument("name", help="Tool name")
    call_parser.add_argument("params", nargs="*", help="Parameters as key=value")

    args = parser.parse_args()

    try:
        settings = load_settings(args.settings)
    except ConfigurationError as e:
        console.print(f"[bold red]Invalid settings:[/bold red] {e.message}")
        return 2

    configure_logging(
        level=parse_level(args.log_level or settings.logging.level),
        file=args.log_file,
    )
    logger = logging.getLogger("meraki.main")

    try:
        if args.command == "tools":
            print_tools(ExecutionContext.from_settings(settings))
            return 0

        return asyncio.run(run_call(settings, args.name, parse_call_args(args.params)))

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        return 130
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        return 2
    except Exception as e:
        logger.exception("Fatal error")
        console.print(f"[bold red]Error:[/bold red] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
