from __future__ import annotations

import json

import click

from clipping_pipeline.config import get_safe_config_report, get_settings
from clipping_pipeline.runtime import build_pipeline
from clipping_pipeline.stages.media import tools_available
from clipping_pipeline.utils.log import set_log_level


@click.command(name="serve")
@click.option("--host", default=None, help="Bind host (default: HOST).")
@click.option("--port", type=int, default=None, help="Bind port (default: PORT).")
@click.option("--log-level", default=None, help="Override LOG_LEVEL.")
def serve(host: str | None, port: int | None, log_level: str | None) -> None:
    """Run the HTTP API and the stage dispatchers."""
    import uvicorn

    s = get_settings()
    if log_level:
        set_log_level(log_level)
    uvicorn.run(
        "clipping_pipeline.server:app",
        host=host or str(s.host),
        port=int(port or s.port),
        log_config=None,
    )


@click.command(name="cleanup")
def cleanup() -> None:
    """Apply the retention policy now."""
    evicted = build_pipeline().orchestrator.cleanup()
    click.echo(f"Evicted: completed={evicted['completed']} failed={evicted['failed']}")


@click.command(name="backfill-cache")
def backfill_cache() -> None:
    """Write reprocess cache entries for completed jobs missing them."""
    n = build_pipeline().reprocessor.backfill()
    click.echo(f"Cache entries written: {n}")


@click.command(name="health")
def health() -> None:
    """Queue depth per stage, job totals and external tool availability."""
    out = build_pipeline().orchestrator.health()
    out["tools"] = tools_available()
    click.echo(json.dumps(out, indent=2, sort_keys=True))


@click.command(name="config")
def config() -> None:
    """Print the effective (non-secret) configuration."""
    click.echo(json.dumps(get_safe_config_report(), indent=2, sort_keys=True))


def add_commands(cli_group) -> None:
    cli_group.add_command(serve)
    cli_group.add_command(cleanup)
    cli_group.add_command(backfill_cache)
    cli_group.add_command(health)
    cli_group.add_command(config)


__all__ = ["add_commands", "serve", "cleanup", "backfill_cache", "health", "config"]
