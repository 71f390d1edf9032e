"""Main CLI application using Typer."""

import sys

import typer
from rich.console import Console

from agentree import __version__

app = typer.Typer(
    name="agentree",
    help="agentree - Declarative agent trees for tool-using language models",
    no_args_is_help=True,
)

console = Console()


@app.command()
def version():
    """Show agentree version."""
    console.print(f"agentree version {__version__}")


@app.command()
def run(
    agent_file: str = typer.Argument(..., help="Path to a YAML agent file"),
    message: str = typer.Option(None, "--message", "-m", help="User message to start with"),
    stream: bool = typer.Option(False, "--stream", "-s", help="Stream the response as it arrives"),
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file (default: ~/.agentree/agentree.yaml)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run an agent file once and print the result."""
    from agentree.cli.run_cmd import run_command

    run_command(
        agent_file=agent_file,
        message=message,
        stream=stream,
        config_path=config_path,
        verbose=verbose,
    )


@app.command()
def chat(
    agent_file: str = typer.Argument(..., help="Path to a YAML agent file"),
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file (default: ~/.agentree/agentree.yaml)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Start an interactive chat session with an agent file."""
    from agentree.cli.chat import chat_command

    chat_command(agent_file=agent_file, config_path=config_path, verbose=verbose)


def main():
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
