"""One-shot run command."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.markdown import Markdown

from agentree.config.loader import ConfigError, load_config
from agentree.errors import AgentreeError
from agentree.execution.events import TextEvent, ToolResultEvent, ToolUseStartEvent
from agentree.run import create_agent
from agentree.tree.loader import load_agent_file

if TYPE_CHECKING:
    from agentree.config.schema import AgentreeConfig
    from agentree.execution.engine import AgentResult
    from agentree.handles.agent import AgentHandle
    from agentree.tree.nodes import Node

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(config: AgentreeConfig | None, verbose: bool) -> None:
    """Configure root logging for a CLI session.

    Args:
        config: Loaded configuration, whose ``logging.level`` is the default
        verbose: Log everything at DEBUG instead
    """
    if verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, config.logging.level if config else "WARNING")
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    # HTTP client internals are noise even at DEBUG
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    if verbose:
        logger.info("Verbose logging enabled")


def load_session(
    agent_file: str, config_path: str | None, verbose: bool
) -> tuple[AgentreeConfig, Node]:
    """Load config and agent file, exiting with status 1 on failure."""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]Failed to load config: {e}[/red]")
        raise typer.Exit(1) from e

    setup_logging(config, verbose)

    try:
        tree = load_agent_file(agent_file)
    except AgentreeError as e:
        console.print(f"[red]Failed to load agent file: {e}[/red]")
        raise typer.Exit(1) from e
    return config, tree


async def stream_to_console(handle: AgentHandle, text: str | None) -> AgentResult:
    """Run with streaming, printing text as it arrives."""
    stream = handle.stream(text)
    async for event in stream:
        if isinstance(event, TextEvent):
            console.print(event.text, end="", markup=False, highlight=False)
        elif isinstance(event, ToolUseStartEvent):
            console.print(f"\n[dim]→ {event.tool_name}[/dim]")
        elif isinstance(event, ToolResultEvent) and event.is_error:
            console.print(f"[yellow]{event.tool_name} failed: {event.result}[/yellow]")
    console.print()
    return stream.result


def run_command(
    agent_file: str,
    message: str | None = None,
    stream: bool = False,
    config_path: str | None = None,
    verbose: bool = False,
) -> None:
    """Run an agent file to completion.

    Args:
        agent_file: Path to the YAML agent file
        message: Optional user message appended before running
        stream: Print text as it streams in
        config_path: Optional path to config file
        verbose: Enable debug logging
    """
    config, tree = load_session(agent_file, config_path, verbose)
    try:
        asyncio.run(_run(config, tree, message, stream))
    except AgentreeError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e


async def _run(config: AgentreeConfig, tree: Node, message: str | None, stream: bool) -> None:
    handle = create_agent(tree, config=config)
    try:
        if stream:
            await stream_to_console(handle, message)
        else:
            with console.status("[bold green]Thinking...[/bold green]", spinner="dots"):
                result = await handle.run(message)
            console.print(Markdown(result.content))
    finally:
        handle.close()
        await handle.provider.close()
