"""Command line entry point: ``bedrock-proxy serve``."""

from __future__ import annotations

import asyncio
import logging
import signal

import rich_click as click
from dotenv import load_dotenv

from bedrock_proxy.config import LOG_LEVELS, ConfigError, GatewayConfig
from bedrock_proxy.server import GatewayServer

logger = logging.getLogger(__name__)

click.rich_click.USE_RICH_MARKUP = True
click.rich_click.USE_MARKDOWN = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = "Try running '--help' for more information."
click.rich_click.MAX_WIDTH = 100


def configure_logging(level: int) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_config(
    host: str | None = None,
    port: int | None = None,
    region: str | None = None,
    log_level: str | None = None,
    done_sentinel: bool | None = None,
) -> GatewayConfig:
    """Read the environment, then apply command line overrides."""
    config = GatewayConfig.from_env()
    if host:
        config.host = host
    if port is not None:
        config.port = port
    if region:
        config.aws_region = region
    if log_level:
        config.log_level = log_level.lower()
    if done_sentinel is not None:
        config.emit_done_sentinel = done_sentinel
    return config


async def _serve(config: GatewayConfig) -> None:
    server = GatewayServer(config=config)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    await server.start()
    try:
        await stop.wait()
    finally:
        await server.shutdown()


@click.group()
@click.version_option(package_name="bedrock-anthropic-proxy")
def cli() -> None:
    """Bedrock Anthropic Proxy - Anthropic Messages API in front of AWS Bedrock.

    Requests must carry `Authorization: Bearer <BEARER_TOKEN>`. Streaming
    requests (`"stream": true`) are relayed as Server-Sent Events.
    """


@cli.command()
@click.option("--host", default=None, help="Interface to bind [env: HOST, default 127.0.0.1]")
@click.option("--port", type=int, default=None, help="Port to bind [env: PORT, default 3000]")
@click.option("--region", default=None, help="Bedrock region [env: AWS_REGION, default us-east-1]")
@click.option(
    "--log-level",
    type=click.Choice(sorted(LOG_LEVELS), case_sensitive=False),
    default=None,
    help="Log verbosity [env: LOG_LEVEL, default info]",
)
@click.option(
    "--env-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Load environment variables from a .env file (real env wins)",
)
@click.option(
    "--done-sentinel/--no-done-sentinel",
    default=None,
    help="End successful streams with `data: [DONE]` [env: EMIT_DONE_SENTINEL]",
)
def serve(
    host: str | None,
    port: int | None,
    region: str | None,
    log_level: str | None,
    env_file: str | None,
    done_sentinel: bool | None,
) -> None:
    """Start the proxy server."""
    if env_file:
        load_dotenv(env_file, override=False)

    try:
        config = build_config(host, port, region, log_level, done_sentinel)
    except ConfigError as err:
        raise click.ClickException(f"Configuration error: {err}") from err

    configure_logging(config.logging_level)
    asyncio.run(_serve(config))


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
