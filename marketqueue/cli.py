import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.logging import RichHandler

from .config import MarketQueueConfig
from .state import PipelineState


app = typer.Typer(help="Marketqueue CLI")

config_path_type = Annotated[
    Path, typer.Argument(help="Pipeline config file (YAML/JSON)")
]
state_path_type = Annotated[
    Path, typer.Argument(help="State file, read if it exists and written back")
]


# --- Global callback (runs before every command) ---
@app.callback()
def main(
    ctx: typer.Context,
    log_level: str = typer.Option(
        "INFO",
        "--log-level",
        "-l",
        help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        case_sensitive=False,
    ),
):
    """Global options for all Marketqueue commands."""
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise typer.BadParameter(f"Invalid log level: {log_level}")

    logging.basicConfig(
        handlers=[RichHandler(rich_tracebacks=True, markup=True)],
    )
    logging.getLogger("marketqueue").setLevel(level)

    ctx.obj = {"log_level": level}


def _echo_progress(state: PipelineState):
    p = state.progress
    typer.echo(
        f"queued: {p.items_queued}, processed: {p.items_processed}, "
        f"worked: {p.worked_messages}, failures: {len(p.failures)}, "
        f"wait: {state.wait_seconds}s"
    )


@app.command(help="Queue the next tasks of every provider")
def queue(
    config_path: config_path_type,
    state_path: state_path_type,
    skip_queueing: Annotated[
        bool, typer.Option("--skip-queueing", help="Pass the state through untouched")
    ] = False,
):
    cfg = MarketQueueConfig.from_yaml(config_path)
    state = PipelineState.load(state_path)
    state.skip_queueing = skip_queueing
    state = asyncio.run(cfg.build_queuer().run(state))
    state.dump(state_path)
    _echo_progress(state)
    not_done = [p for p, done in state.checkpoint.queued_all_items.items() if not done]
    if not_done:
        typer.echo(f"partially queued: {', '.join(not_done)}")


async def _work(cfg: MarketQueueConfig, state: PipelineState) -> PipelineState:
    async with cfg.build_fetcher() as fetcher:
        return await cfg.build_worker(fetcher).run(state)


@app.command(help="Process queued tasks within one call budget")
def work(
    config_path: config_path_type,
    state_path: state_path_type,
    max_api_calls: Annotated[
        Optional[int],
        typer.Option("-n", "--max-api-calls", help="Overrides worker.max_api_calls"),
    ] = None,
):
    cfg = MarketQueueConfig.from_yaml(config_path)
    if max_api_calls is not None:
        cfg.worker.max_api_calls = max_api_calls
    state = PipelineState.load(state_path)
    state = asyncio.run(_work(cfg, state))
    state.dump(state_path)
    _echo_progress(state)
    if state.progress.stalled:
        typer.echo("stalled: messages are left in the queue", err=True)
        raise typer.Exit(code=2)


async def _run(cfg: MarketQueueConfig, state: PipelineState) -> PipelineState:
    async with cfg.build_fetcher() as fetcher:
        return await cfg.build_pipeline(fetcher).run(state)


@app.command(help="Queue and process everything, looping until done")
def run(
    config_path: config_path_type,
    state_path: Annotated[
        Optional[Path],
        typer.Option("-s", "--state", help="Resume from and write to this state file"),
    ] = None,
):
    cfg = MarketQueueConfig.from_yaml(config_path)
    state = PipelineState.load(state_path) if state_path else PipelineState()
    state = asyncio.run(_run(cfg, state))
    if state_path:
        state.dump(state_path)
    _echo_progress(state)
