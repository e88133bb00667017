"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager

import typer

from devbuild.api import Client
from devbuild.core.errors import DevbuildError

app = typer.Typer(help="Local development build orchestrator: binaries, CSS, hot reload")

_CONFIG_HELP = "Path to devbuild.yaml (searched upwards from cwd by default)"


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


def _build_client(config: str | None) -> Client:
    return Client(config_path=config, logger=typer.echo)


@contextmanager
def _stop_on_signals(client: Client) -> Iterator[None]:
    def _handler(signum: int, frame: object) -> None:
        typer.echo(f"Received signal {signum}, stopping...", err=True)
        client.stop()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


@app.command("providers")
def list_providers(
    config: str | None = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """List registered providers, their order and dependencies."""
    _configure_logging(verbose)
    try:
        client = _build_client(config)
        for info in client.providers():
            deps = ", ".join(info.dependencies) or "-"
            typer.echo(f"{info.name} (order {info.service_order}) depends on: {deps}")
    except DevbuildError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("install")
def install(
    binaries: list[str] | None = typer.Argument(None, help="Binaries to install (default: configured list)"),
    config: str | None = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Install all required binaries and npm asset packages."""
    _configure_logging(verbose)
    try:
        client = _build_client(config)
        report = client.install(binaries or None)
    except DevbuildError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    if report.total == 0:
        typer.echo("Warning: No binaries required in configuration.", err=True)
        return
    for name, version in report.installed.items():
        typer.echo(f"✓ {name} installed ({version})")
    for name in report.synced:
        typer.echo(f"✓ {name} synced to public vendor directory")
    for name, reason in report.failed.items():
        typer.echo(f"✗ {name}: {reason}", err=True)

    if report.exit_code != 0:
        typer.echo(f"{len(report.installed)}/{report.total} binaries installed successfully.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"All {report.total} binaries installed successfully!")


@app.command("dev")
def dev(
    config: str | None = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Run init for every one-shot setup service."""
    _configure_logging(verbose)
    try:
        code = _build_client(config).dev()
    except DevbuildError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    raise typer.Exit(code=code)


@app.command("build")
def build(
    config: str | None = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Init all services, then run a one-shot build of each."""
    _configure_logging(verbose)
    try:
        code = _build_client(config).build()
    except DevbuildError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    raise typer.Exit(code=code)


@app.command("watch")
def watch(
    config: str | None = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Init all services and keep dev services running until interrupted."""
    _configure_logging(verbose)
    try:
        client = _build_client(config)
        with _stop_on_signals(client):
            code = client.watch()
    except DevbuildError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    raise typer.Exit(code=code)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
