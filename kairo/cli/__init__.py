"""Kairo CLI application - main entry point."""

import asyncio
import json
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from .helpers import build_router, load_cli_config, open_store

app = typer.Typer(
    name="kairo",
    help="Route messages to specialized agents with relevance-scored memory",
    no_args_is_help=True,
)

console = Console()

EXIT_WORDS = {"exit", "quit", "/exit", "/quit"}


def _agent_option(value: Optional[str]):
    from kairo.routing.agents import AgentId

    if value is None:
        return None
    try:
        return AgentId(value.lower())
    except ValueError:
        valid = ", ".join(a.value for a in AgentId)
        console.print(f"[red]Unknown agent '{value}'. Choose from: {valid}[/red]")
        raise typer.Exit(1)


@app.command()
def route(
    message: str = typer.Argument(help="Message to route"),
    session: str = typer.Option("cli", "--session", "-s", help="Session id"),
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Agent currently owning the conversation"),
    as_json: bool = typer.Option(False, "--json", help="Print the response as JSON"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to kairo.yaml"),
):
    """Process one message and print the response."""
    config = load_cli_config(config_path)
    current_agent = _agent_option(agent)

    async def runner():
        store = open_store(config)
        router = build_router(config, store)
        try:
            return await router.process(message, session, current_agent)
        finally:
            await router.close()
            await store.close()

    response = asyncio.run(runner())

    if as_json:
        print(json.dumps(asdict(response), default=str, indent=2))
    else:
        if response.routing:
            console.print(
                f"[dim]→ {response.routing.target_agent.value} "
                f"(confidence {response.routing.confidence:.2f}: {response.routing.reasoning})[/dim]"
            )
        style = "green" if response.success else "red"
        console.print(Panel(response.message, title=response.handled_by.value, border_style=style))

    if not response.success:
        raise typer.Exit(1)


@app.command()
def chat(
    session: str = typer.Option("chat", "--session", "-s", help="Session id"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to kairo.yaml"),
):
    """Start an interactive routing session. Type 'exit' to leave."""
    from kairo.routing.maintenance import Maintenance

    config = load_cli_config(config_path)

    async def runner():
        store = open_store(config)
        router = build_router(config, store)
        maintenance = Maintenance(router.state, store, interval=config.sweep_interval)
        maintenance.start()
        current_agent = None
        try:
            while True:
                try:
                    message = await asyncio.to_thread(console.input, "[bold cyan]you>[/bold cyan] ")
                except (EOFError, KeyboardInterrupt):
                    break
                message = message.strip()
                if not message:
                    continue
                if message.lower() in EXIT_WORDS:
                    break

                response = await router.process(message, session, current_agent)
                if response.success:
                    current_agent = response.handled_by
                label = response.handled_by.value
                if response.routing:
                    label += f" ← routed ({response.routing.confidence:.2f})"
                console.print(f"[bold green]{label}>[/bold green] {response.message}\n")
        finally:
            await maintenance.stop()
            await router.close()
            await store.close()

    asyncio.run(runner())


@app.command()
def version():
    """Show version information."""
    from kairo import __version__

    console.print(f"Kairo version {__version__}")


# Register subcommands from separate modules
from .memory import memory_app  # noqa: E402

app.add_typer(memory_app, name="memory")
