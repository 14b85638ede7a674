"""
CLI entry point for the bridge relayer.
"""

import asyncio
import contextlib
import logging
import signal
from pathlib import Path
from typing import Optional

import structlog
import typer

from .chain import ChainClient
from .config import ChainConfig, RelayerConfig
from .coordinator import RelayCoordinator, handle_loop_exception
from .errors import ConfigError, ConnectivityError
from .evm import EvmChainClient
from .tron import TronChainClient

logger = structlog.get_logger()

app = typer.Typer(
    name="bridge-relayer",
    help="Cross-chain bridge deposit relayer",
    add_completion=False,
)


def configure_logging(level: str = "INFO", json: bool = False) -> None:
    """Set up structlog output for the process."""
    processors: list = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        cache_logger_on_first_use=False,
    )


def load_config(config_path: Optional[Path]) -> RelayerConfig:
    """Load configuration or exit with status 1."""
    try:
        config = RelayerConfig.from_env(config_path)
    except ConfigError as e:
        configure_logging()
        logger.error("invalid_configuration", error=str(e))
        raise typer.Exit(code=1)

    configure_logging(config.settings.log_level, config.settings.log_json)
    return config


def make_client(chain: ChainConfig, receipt_timeout: float) -> ChainClient:
    """Client for one chain, picked by its configured kind."""
    if chain.kind == "tron":
        return TronChainClient(chain, receipt_timeout=receipt_timeout)
    return EvmChainClient(chain, receipt_timeout=receipt_timeout)


def build_clients(config: RelayerConfig) -> tuple[ChainClient, ChainClient]:
    timeout = config.settings.receipt_timeout_seconds
    return (
        make_client(config.chain_a, timeout),
        make_client(config.chain_b, timeout),
    )


async def _run_relayer(config: RelayerConfig) -> None:
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(handle_loop_exception)

    client_a, client_b = build_clients(config)
    coordinator = RelayCoordinator(config, client_a, client_b)

    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, coordinator.stop)

    try:
        await coordinator.run()
    finally:
        coordinator.ledger.close()
        await client_a.close()
        await client_b.close()


async def _check_chains(config: RelayerConfig) -> list[str]:
    failures = []
    for client in build_clients(config):
        try:
            await client.check_connectivity()
            typer.echo(f"✓ {client.name} (chain {client.chain_id}) reachable")
        except ConnectivityError as e:
            typer.echo(f"✗ {client.name}: {e.message}")
            failures.append(client.name)
        finally:
            await client.close()
    return failures


@app.command()
def run(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to .env configuration file",
    ),
) -> None:
    """
    Start relaying deposits between chain A and chain B until interrupted.
    """
    config = load_config(config_path)
    config.log_summary()

    try:
        asyncio.run(_run_relayer(config))
    except KeyboardInterrupt:
        logger.info("relayer_interrupted")
    except Exception as e:
        logger.exception("relayer_crashed", error=str(e))
        raise typer.Exit(code=1)


@app.command()
def check(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to .env configuration file",
    ),
) -> None:
    """
    Check that both chains and their bridge contracts are reachable.
    """
    config = load_config(config_path)
    failures = asyncio.run(_check_chains(config))
    if failures:
        raise typer.Exit(code=1)


@app.command()
def version() -> None:
    """Show the relayer version."""
    from bridge_relayer import __version__
    typer.echo(f"bridge-relayer v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
