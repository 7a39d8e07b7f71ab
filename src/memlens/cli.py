"""CLI entry point for memlens."""

from dataclasses import replace
from pathlib import Path

import click
import structlog

log = structlog.get_logger()


@click.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.config/memlens/config.toml).",
)
@click.option(
    "--interval",
    type=click.FloatRange(min=0.1),
    default=None,
    help="Seconds between samples (overrides the config file).",
)
@click.option("--skip-checks", is_flag=True, help="Skip the Linux/root/kernel checks.")
def main(config_path: Path | None, interval: float | None, skip_checks: bool) -> None:
    """Show where physical memory goes: PSS vs RSS, sharing and a memory map."""
    from memlens import logging as memlens_logging
    from memlens.app import MemlensApp
    from memlens.config import Config
    from memlens.preflight import PreflightError, run_checks

    try:
        config = Config.load(config_path)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1) from e

    if interval is not None:
        config.sampling = replace(config.sampling, interval=interval)

    memlens_logging.configure(config)

    if not skip_checks:
        try:
            warnings = run_checks()
        except PreflightError as e:
            click.echo(f"Error: {e}", err=True)
            raise SystemExit(1) from e
        for warning in warnings:
            click.echo(f"Warning: {warning}", err=True)

    log.info("memlens_starting", interval=config.sampling.interval)
    MemlensApp(config=config).run()
