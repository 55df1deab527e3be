"""
Command-line interface for lmturn.

Usage:
    lmturn ask PROMPT [--model NAME] [--system TEXT] [--no-stream] [--timeout S]
    lmturn chat [--model NAME] [--system TEXT]
    lmturn models
    lmturn tools
    lmturn config show
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from lmturn.config import LMTurnConfig, load_config
from lmturn.conversation import Conversation, ConversationState, TurnEngine
from lmturn.errors import LMTurnError
from lmturn.events import (
    STREAM_CONTENT,
    TOOL_ERROR,
    TOOL_EXECUTED,
    TOOL_PROGRESS,
    TOOL_QUEUED,
    StreamContent,
    ToolEvent,
    ToolQueued,
)
from lmturn.llm.providers.base import ModelClient
from lmturn.llm.providers.openai_compat import OpenAICompatClient
from lmturn.tools.deferred import ThreadPoolDeferredExecutor
from lmturn.tools.registry import ToolRegistry
from lmturn.tools.strategy import ToolExecutionStrategy

app = typer.Typer(name="lmturn", help="Tool-calling chat against a local OpenAI-compatible server")
config_app = typer.Typer(help="Configuration management")
app.add_typer(config_app, name="config")

console = Console()

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "lmturn.yaml",
        Path.cwd() / "lmturn.yml",
        Path.home() / ".config" / "lmturn" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(config: Optional[Path], overrides: dict) -> LMTurnConfig:
    return load_config(config or _get_config_path(), cli_overrides=overrides)


def make_client(cfg: LMTurnConfig) -> ModelClient:
    return OpenAICompatClient(
        base_url=cfg.client.base_url,
        api_key=cfg.client.api_key,
        timeout=cfg.client.timeout_seconds,
        max_retries=cfg.client.max_retries,
        headers=cfg.client.headers,
    )


def _setup_stack(cfg: LMTurnConfig) -> tuple[TurnEngine, ThreadPoolDeferredExecutor]:
    """Wire client, tools, strategy and engine from *cfg*."""
    registry = ToolRegistry()
    if cfg.tools.plugins:
        try:
            loaded = registry.load_plugins()
        except Exception:
            logger.exception("Failed to load tool plugins")
        else:
            logger.info("loaded %d tool plugin(s)", loaded)

    executor = ThreadPoolDeferredExecutor(registry, max_workers=cfg.tools.max_workers)
    strategy = ToolExecutionStrategy(
        registry,
        executor=executor,
        defer_by_default=cfg.tools.defer_by_default,
        deferred_tools=cfg.tools.deferred,
    )
    engine = TurnEngine(make_client(cfg), registry, strategy, config=cfg.turn)

    engine.aggregator.on(STREAM_CONTENT, _print_delta)
    engine.on(TOOL_QUEUED, _print_queued)
    engine.on(TOOL_EXECUTED, _print_tool)
    engine.on(TOOL_ERROR, _print_tool)
    engine.on(TOOL_PROGRESS, _print_tool)
    return engine, executor


def _print_delta(event: StreamContent) -> None:
    console.print(event.delta, end="", markup=False, highlight=False)


def _print_queued(event: ToolQueued) -> None:
    console.print(f"\n[dim]\\[queued {event.call.name}][/dim]")


def _print_tool(event: ToolEvent) -> None:
    outcome = event.outcome
    style = {"success": "green", "error": "red", "in_progress": "yellow"}[outcome.status.value]
    label = f"{outcome.progress}%" if outcome.progress is not None else outcome.status.value
    console.print(f"\n[{style}]\\[{event.call.name}: {label}][/{style}] [dim]{outcome.content[:200]}[/dim]")


async def _run_turn(convo: Conversation, prompt: str, timeout: float | None) -> str:
    text = await convo.send(prompt, timeout=timeout)
    if convo.engine.config.streaming:
        console.print()
    else:
        console.print(text, markup=False, highlight=False)
    return text


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def ask(
    prompt: str = typer.Argument(..., help="User message"),
    model: Optional[str] = typer.Option(None, help="Model identifier"),
    system: Optional[str] = typer.Option(None, help="System prompt"),
    stream: Optional[bool] = typer.Option(None, "--stream/--no-stream", help="Stream the response"),
    timeout: Optional[float] = typer.Option(None, help="Turn timeout in seconds"),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to YAML config"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Send a single prompt and print the final answer."""
    _configure_logging(verbose)
    cfg = _load(config, {"turn.model": model, "turn.streaming": stream})

    async def _run():
        engine, executor = _setup_stack(cfg)
        state = ConversationState(cfg.turn.model, cfg.turn.options)
        if system:
            state.add_system_message(system)
        try:
            await _run_turn(Conversation(engine, state), prompt, timeout)
        finally:
            executor.shutdown(wait=False)
            await engine.client.aclose()

    try:
        asyncio.run(_run())
    except LMTurnError as e:
        console.print(f"\n[red]Error:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def chat(
    model: Optional[str] = typer.Option(None, help="Model identifier"),
    system: Optional[str] = typer.Option(None, help="System prompt"),
    stream: Optional[bool] = typer.Option(None, "--stream/--no-stream", help="Stream responses"),
    timeout: Optional[float] = typer.Option(None, help="Per-turn timeout in seconds"),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to YAML config"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Start an interactive chat session.  /quit exits, /history dumps messages."""
    _configure_logging(verbose)
    cfg = _load(config, {"turn.model": model, "turn.streaming": stream})

    async def _run():
        engine, executor = _setup_stack(cfg)
        state = ConversationState(cfg.turn.model, cfg.turn.options)
        if system:
            state.add_system_message(system)
        convo = Conversation(engine, state)
        console.print(f"[bold]lmturn[/bold] [dim]model={cfg.turn.model} -- /quit to exit[/dim]")
        try:
            while True:
                try:
                    line = await asyncio.to_thread(console.input, "[cyan]> [/cyan]")
                except (EOFError, KeyboardInterrupt):
                    break
                line = line.strip()
                if not line:
                    continue
                if line == "/quit":
                    break
                if line == "/history":
                    for m in convo.messages:
                        console.print_json(json.dumps(m.to_wire()))
                    continue
                try:
                    await _run_turn(convo, line, timeout)
                except LMTurnError as e:
                    console.print(f"\n[red]Error:[/red] {e}")
        finally:
            executor.shutdown(wait=False)
            await engine.client.aclose()

    asyncio.run(_run())


@app.command()
def models(
    config: Optional[Path] = typer.Option(None, "--config", help="Path to YAML config"),
):
    """List the models served by the configured endpoint."""
    cfg = _load(config, {})

    async def _run() -> list[str]:
        client = make_client(cfg)
        try:
            return await client.list_models()
        finally:
            await client.aclose()

    try:
        names = asyncio.run(_run())
    except LMTurnError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title=f"Models at {cfg.client.base_url}")
    table.add_column("Model", style="cyan")
    for name in names:
        table.add_row(name)
    console.print(table)


@app.command()
def tools():
    """List tools published by installed plugins."""
    registry = ToolRegistry()
    registry.load_plugins()
    table = Table(title="Registered Tools", show_lines=True)
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Required", no_wrap=True)
    table.add_column("Progress", no_wrap=True)
    table.add_column("Description")
    for t in registry.list():
        progress = "yes" if t.reports_progress else "-"
        table.add_row(t.name, ", ".join(t.required) or "-", progress, t.description)
    console.print(table)


@config_app.command("show")
def config_show(
    config: Optional[Path] = typer.Option(None, "--config", help="Path to YAML config"),
):
    """Print the effective configuration."""
    cfg = _load(config, {})
    data = cfg.to_dict()
    if data["client"].get("api_key"):
        data["client"]["api_key"] = "***"
    console.print(Syntax(json.dumps(data, indent=2), "json", theme="monokai"))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
