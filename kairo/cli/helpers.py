"""Shared CLI helpers."""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from kairo.config import KairoConfig, build_memory_store, load_config
from kairo.exceptions import ConfigurationError
from kairo.memory.store import MemoryStore
from kairo.routing.agents import AgentRegistry
from kairo.routing.router import Router
from kairo.routing.state import RoutingStateManager


def get_error_console() -> Console:
    return Console(stderr=True)


def load_cli_config(config_path: Optional[Path]) -> KairoConfig:
    """Load config or exit with a readable error."""
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        get_error_console().print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1)

    level = getattr(logging, config.log_level.upper(), None)
    if isinstance(level, int):
        logging.getLogger("kairo").setLevel(level)
    return config


def open_store(config: KairoConfig) -> MemoryStore:
    """Build the memory store or exit when the backend is misconfigured."""
    try:
        return build_memory_store(config)
    except ConfigurationError as e:
        get_error_console().print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1)


def build_router(config: KairoConfig, store: MemoryStore) -> Router:
    """Router with template agents for every specialist."""
    return Router(
        memory=store,
        registry=AgentRegistry.with_templates(),
        state=RoutingStateManager(config.thresholds, config.timings),
        thresholds=config.thresholds,
        timings=config.timings,
    )
