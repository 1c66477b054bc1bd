"""feed-capture: CLI for the event capture bridge."""

from __future__ import annotations

import signal
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError

from .bridge import CaptureBridge
from .client import SubscriptionClient
from .errors import FeedCaptureError
from .logging import setup_logging
from .schemas import CATEGORY_SETS, default_categories
from .settings import Settings

app = typer.Typer(
    add_completion=False,
    invoke_without_command=True,
    help="Capture live feed callbacks into per-category JSON files (start, subscribe, unsubscribe).",
)


def _load_settings(**overrides: Any) -> Settings:
    explicit = {key: value for key, value in overrides.items() if value not in (None, [], ())}
    try:
        return Settings(**explicit)
    except ValidationError as exc:
        typer.echo(f"❌ Invalid configuration:\n{exc}", err=True)
        raise typer.Exit(code=2) from exc


def _install_signal_handlers(bridge: CaptureBridge) -> None:
    def _handle(signum: int, _frame: Any) -> None:
        typer.echo(f"↪️  received {signal.Signals(signum).name}; shutting down", err=True)
        bridge.stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


@app.callback()
def _main(ctx: typer.Context) -> None:
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


@app.command(name="start", help="Run the bridge until interrupted.")
def start(
    feed_api_url: str | None = typer.Option(None, "--feed-api-url", help="Feed API base URL."),
    listen_host: str | None = typer.Option(None, "--listen-host", help="Listener bind host."),
    listen_port: int | None = typer.Option(None, "--listen-port", help="Listener bind port."),
    callback_url: str | None = typer.Option(
        None, "--callback-url", help="Externally reachable callback URL."
    ),
    output_dir: Path | None = typer.Option(None, "--output-dir", help="Directory for event files."),
    subscription_id: str | None = typer.Option(
        None, "--subscription-id", help="Update this existing subscription instead of creating one."
    ),
    category: list[str] | None = typer.Option(
        None, "--category", "-c", help="Event category to subscribe to (repeatable)."
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Root log level."),
) -> None:
    settings = _load_settings(
        feed_api_url=feed_api_url,
        listener_host=listen_host,
        listener_port=listen_port,
        callback_url=callback_url,
        output_dir=output_dir,
        subscription_id=subscription_id,
        categories=category,
        log_level=log_level,
    )
    setup_logging(settings)

    bridge = CaptureBridge(settings)
    _install_signal_handlers(bridge)
    try:
        bridge.run()
    except FeedCaptureError as exc:
        typer.echo(f"❌ {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.command(name="subscribe", help="Register a subscription once and print its id.")
def subscribe(
    feed_api_url: str | None = typer.Option(None, "--feed-api-url", help="Feed API base URL."),
    callback_url: str | None = typer.Option(
        None, "--callback-url", help="Externally reachable callback URL."
    ),
    subscription_id: str | None = typer.Option(
        None, "--subscription-id", help="Update this existing subscription instead of creating one."
    ),
    category: list[str] | None = typer.Option(
        None, "--category", "-c", help="Event category to subscribe to (repeatable)."
    ),
) -> None:
    settings = _load_settings(
        feed_api_url=feed_api_url,
        callback_url=callback_url,
        subscription_id=subscription_id,
        categories=category,
    )
    setup_logging(settings)

    wanted = settings.categories or list(default_categories(settings.feed_api_version or "v0.1"))
    with SubscriptionClient.from_settings(settings) as client:
        try:
            new_id = client.register(wanted)
        except FeedCaptureError as exc:
            typer.echo(f"❌ {exc}", err=True)
            raise typer.Exit(code=1) from exc
    typer.echo(new_id)


@app.command(name="unsubscribe", help="Delete a subscription left behind by a killed process.")
def unsubscribe(
    subscription_id: str = typer.Argument(..., help="Subscription id to delete."),
    feed_api_url: str | None = typer.Option(None, "--feed-api-url", help="Feed API base URL."),
) -> None:
    settings = _load_settings(feed_api_url=feed_api_url)
    setup_logging(settings)

    with SubscriptionClient.from_settings(settings) as client:
        try:
            client.unregister(subscription_id)
        except FeedCaptureError as exc:
            typer.echo(f"❌ {exc}", err=True)
            raise typer.Exit(code=1) from exc
    typer.echo(f"✅ deleted subscription {subscription_id}")


@app.command(name="categories", help="List the default event categories for a feed API version.")
def categories(
    version: str = typer.Option("v0.1", "--version", help=f"One of: {', '.join(CATEGORY_SETS)}."),
) -> None:
    try:
        names = default_categories(version)
    except ValueError as exc:
        typer.echo(f"❌ {exc}", err=True)
        raise typer.Exit(code=2) from exc
    for name in names:
        typer.echo(name)


if __name__ == "__main__":
    app()
