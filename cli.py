"""
CLI entry point for Bedrock Workbench.

Run:  bedrock-workbench find-bugs [--source DIR]
      bedrock-workbench refactor [--source DIR] [--output DIR]
      bedrock-workbench ask ROLE "ASSIGNMENT" [--source DIR] [--output DIR]
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape as rich_escape

from actions import REFACTOR_ASSIGNMENT, CodeActions
from agent import AgentEvent, Role
from config import app_config
from bedrock_service import BedrockError
from errors import SessionIncompleteError, WorkbenchError
from sandbox import create_runtime
from workspace import DirectorySnapshot

console = Console(stderr=True)
out = Console()

_EVENT_STYLES = {
    "turn_start": "dim",
    "tool_call": "cyan",
    "edit_applied": "green",
    "edit_rejected": "yellow",
    "check_result": "magenta",
    "retry": "yellow",
    "error": "bold red",
    "incomplete": "bold yellow",
}


async def _print_event(event: AgentEvent) -> None:
    style = _EVENT_STYLES.get(event.type)
    if style is None:
        return
    if event.type == "turn_start":
        console.print(f"[{style}]-- turn {(event.data or {}).get('turn')}[/{style}]")
    else:
        console.print(f"[{style}]{event.type}[/{style}] {rich_escape(event.content)}", highlight=False)


def _export(snapshot: DirectorySnapshot, output: Optional[str]) -> None:
    if output:
        exported = snapshot.export(output)
        out.print(f"Result written to {exported.path}")
    else:
        out.print(f"Result left in {snapshot.path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bedrock-workbench", description="AI code maintenance in a sandboxed workspace")
    parser.add_argument("--source", default=".", help="Source tree to work on (default: current directory)")
    parser.add_argument("--runtime", choices=["docker", "local"], default=app_config.sandbox_runtime,
                        help=f"Checker sandbox (default: {app_config.sandbox_runtime})")
    parser.add_argument("--max-turns", type=int, default=None, help=f"Turn budget (default: {app_config.max_turns})")
    parser.add_argument("--quiet", action="store_true", help="Don't print session progress")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("find-bugs", help="Find and explain potential bugs")

    refactor = sub.add_parser("refactor", help="Refactor for readability and maintainability")
    refactor.add_argument("--output", default=None, help="Directory to write the refactored tree to (must not exist)")

    ask = sub.add_parser("ask", help="Run a free-form assignment as a given role")
    ask.add_argument("role", help="Role profile, e.g. reader or editor")
    ask.add_argument("assignment", help="Assignment for the model")
    ask.add_argument("--output", default=None, help="Directory to write the edited tree to (editor roles)")
    return parser


def _finish_edits(workspace, output: Optional[str]) -> None:
    """Export edits to output and drop the working copy. Without output the copy is kept as the result."""
    try:
        if workspace.edited_paths:
            _export(workspace.current_directory(), output)
    finally:
        if output or not workspace.edited_paths:
            workspace.discard()


async def _run(args: argparse.Namespace) -> int:
    runtime = create_runtime(args.runtime, docker_binary=app_config.docker_binary,
                             cache_root=app_config.local_cache_root)
    actions = CodeActions(
        source=args.source,
        runtime=runtime,
        max_turns=args.max_turns,
        on_event=None if args.quiet else _print_event,
    )

    if args.command == "find-bugs":
        out.print(Markdown(await actions.find_bugs()))
        return 0

    if args.command == "refactor":
        session = await actions.ask(Role.EDITOR, REFACTOR_ASSIGNMENT)
    else:
        session = await actions.ask(args.role, args.assignment)
    try:
        out.print(Markdown(session.last_reply()))
    finally:
        _finish_edits(session.workspace, args.output)
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, app_config.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if not os.path.isdir(args.source):
        console.print(f"[red]Error:[/red] directory not found: {args.source}")
        return 1

    try:
        return asyncio.run(_run(args))
    except SessionIncompleteError as e:
        console.print(f"[yellow]Incomplete:[/yellow] {e}")
        session = e.session
        if session.last_text:
            out.print(Markdown(session.last_text))
        _finish_edits(session.workspace, getattr(args, "output", None))
        return 2
    except (WorkbenchError, BedrockError) as e:
        console.print(f"[red]Error:[/red] {e}")
        return 1
    except KeyboardInterrupt:
        console.print("[yellow]Cancelled[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
