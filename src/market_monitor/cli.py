from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from pydantic import ValidationError

from .config import MonitorSettings, get_settings
from .errors import ConfigError
from .logging_config import configure_logging
from .metrics.registry import start_metrics_server
from .sources import WebSocketEventSource
from .watcher import FileSink, MarketMonitor, make_disconnect_classifier

app = typer.Typer(help="Marketplace event monitor (websocket subscriptions with reconnect)")


def _load_settings(**overrides) -> MonitorSettings:
    try:
        settings = get_settings()
    except ValidationError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(2)
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


def build_monitor(settings: MonitorSettings, sink: FileSink) -> MarketMonitor:
    source = WebSocketEventSource(settings.ws_url, request_timeout=settings.request_timeout_sec)
    return MarketMonitor(
        source,
        settings.subscription_specs(),
        sink,
        policy=settings.reconnect_policy(),
        classifier=make_disconnect_classifier(settings.disconnect_signatures),
        channel_capacity=settings.channel_capacity,
        shutdown_timeout=settings.shutdown_timeout_sec,
    )


def run_monitor(settings: MonitorSettings) -> int:
    """Run until SIGINT/SIGTERM (0) or retry budget exhaustion (1); 2 on bad config."""
    sink = FileSink.for_directory(
        settings.log_dir,
        durable=settings.durable_sink,
        echo=typer.echo if settings.echo else None,
    )
    handler_id = None
    try:
        handler_id = configure_logging(sink, settings.log_level)
        try:
            monitor = build_monitor(settings, sink)
        except ConfigError as e:
            logger.error(f"Configuration error: {e}")
            return 2

        if settings.metrics_port:
            start_metrics_server(settings.metrics_port)
        logger.info(f"Event log: {sink.path}")
        return asyncio.run(monitor.run())
    finally:
        if handler_id is not None:
            logger.remove(handler_id)
        sink.close()


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Start monitoring when no command is given."""
    if ctx.invoked_subcommand is None:
        raise typer.Exit(run_monitor(_load_settings()))


@app.command()
def run(
    ws_url: Optional[str] = typer.Option(None, "--ws-url", help="JSON-RPC websocket endpoint"),
    address: Optional[str] = typer.Option(None, "--address", help="Marketplace contract address"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", help="Directory for daily event logs"),
    max_retries: Optional[int] = typer.Option(None, "--max-retries", help="Reconnect budget"),
):
    """Subscribe to the marketplace events and log them until interrupted."""
    settings = _load_settings(
        ws_url=ws_url, contract_address=address, log_dir=log_dir, max_retries=max_retries
    )
    raise typer.Exit(run_monitor(settings))


@app.command()
def specs(
    address: Optional[str] = typer.Option(None, "--address", help="Marketplace contract address"),
):
    """Print the subscription specs (name, signature, topic) as JSON lines."""
    settings = _load_settings(contract_address=address)
    try:
        loaded = settings.subscription_specs()
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(2)
    for s in loaded:
        typer.echo(
            json.dumps(
                {
                    "name": s.name,
                    "category": s.label,
                    "address": s.address,
                    "signature": s.signature,
                    "topic": s.event_topic,
                }
            )
        )


if __name__ == "__main__":
    app()
