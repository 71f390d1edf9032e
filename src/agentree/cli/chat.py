"""Interactive chat REPL command."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Confirm, Prompt

from agentree.cli.run_cmd import load_session
from agentree.errors import AgentreeError
from agentree.run import create_agent

if TYPE_CHECKING:
    from agentree.config.schema import AgentreeConfig
    from agentree.handles.agent import AgentHandle
    from agentree.tree.nodes import Node

console = Console()
logger = logging.getLogger(__name__)


def chat_command(agent_file: str, config_path: str | None = None, verbose: bool = False) -> None:
    """Start interactive chat session.

    Args:
        agent_file: Path to the YAML agent file
        config_path: Optional path to config file
        verbose: Enable debug logging
    """
    config, tree = load_session(agent_file, config_path, verbose)
    console.print(
        Panel.fit(
            f"[bold blue]agentree chat[/bold blue]\n"
            f"Agent: {tree.props.get('name', 'agent')}\n"
            f"Type /help for commands, /exit to quit",
            border_style="blue",
        )
    )
    asyncio.run(_async_chat(config, tree))


async def _async_chat(config: AgentreeConfig, tree: Node) -> None:
    """Async chat loop on a single handle, so history carries across turns."""
    try:
        handle = create_agent(tree, config=config)
    except AgentreeError as e:
        console.print(f"[red]Error: {e}[/red]")
        return

    try:
        while True:
            try:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")

                if not user_input.strip():
                    continue

                if user_input.startswith("/"):
                    if _handle_slash_command(user_input, handle):
                        break
                    continue

                with console.status("[bold green]Thinking...[/bold green]", spinner="dots"):
                    result = await handle.send_message(user_input)

                console.print(f"\n[bold green]{handle.instance.name}[/bold green]")
                console.print(Markdown(result.content))

            except KeyboardInterrupt:
                console.print("\n[yellow]Interrupted[/yellow]")
                if Confirm.ask("Exit chat?", default=False):
                    break
            except EOFError:
                break
            except AgentreeError as e:
                console.print(f"\n[red]Error: {e}[/red]")
    finally:
        handle.close()
        await handle.provider.close()

    console.print("\n[cyan]Goodbye![/cyan]")


def _handle_slash_command(command: str, handle: AgentHandle) -> bool:
    """Handle a slash command.

    Returns:
        True if the chat should exit
    """
    cmd = command.lower().strip()

    if cmd in ("/exit", "/quit"):
        return True

    if cmd == "/help":
        console.print(
            "\n[bold]Available commands:[/bold]\n"
            "  /help     - Show this help\n"
            "  /history  - Show message count and status\n"
            "  /tools    - List the agent's active tools\n"
            "  /exit     - Exit chat\n"
        )
    elif cmd == "/history":
        console.print(f"\n{len(handle.messages)} messages, status {handle.status.value}")
    elif cmd == "/tools":
        names = handle.instance.tools.names() + list(handle.instance.native_tools)
        console.print("\n" + (", ".join(names) if names else "[dim]No tools[/dim]"))
    else:
        console.print(f"[yellow]Unknown command: {command}[/yellow]")
        console.print("Type /help for available commands")

    return False
