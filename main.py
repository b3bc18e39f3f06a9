"""
main.py — ClawCord Entry Point

Usage:
    python main.py                              # default settings
    python main.py --config path/to/config.yaml
    python main.py --log-level DEBUG            # verbose logging (raw frames)
    python main.py --no-server                  # gateway only, no local event server

Exit code is non-zero when startup validation fails or the gateway session
goes DEAD after exhausting its reconnect budget.
"""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root before settings are read
ENV_PATH = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=ENV_PATH)

import argparse
import asyncio
import sys


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="clawcord",
        description="ClawCord — bot gateway client with a local event server",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $CLAWCORD_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument(
        "--no-server",
        action="store_true",
        default=False,
        help="Do not start the local event server even if enabled in config",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from config.settings import ConfigError, load_settings
    from observability.logger import get_logger, setup_logging
    from pydantic import ValidationError

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError, TypeError) as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    # CLI --log-level flag overrides config.yaml
    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.log_json_format,
        console_output=settings.log_console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("clawcord.main")
    return settings, log


async def run(settings, log, *, with_server: bool = True) -> int:
    """Run the bot (and optionally the event server) until stopped or DEAD."""
    from bot.bot import Bot
    from interfaces.event_server import EventServer

    bot = Bot(settings.token, settings.bot)
    server = None
    if with_server and settings.server.enabled:
        server = EventServer(settings.server, bot.apply_action)
        server.attach(bot.dispatcher)
        await server.start()

    try:
        await bot.start()
        await bot.wait_closed()
    finally:
        await bot.stop()
        if server is not None:
            await server.stop()

    if bot.is_dead:
        log.error("clawcord.dead", retries=bot.session.retry_count)
        return 2
    return 0


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings, log = bootstrap(args)

    log.info(
        "clawcord.starting",
        gateway=settings.bot.gateway_url,
        api=settings.bot.rest_base_url,
        server=settings.server.enabled and not args.no_server,
    )

    try:
        return await run(settings, log, with_server=not args.no_server)
    except OSError as exc:
        # Event server could not bind, most likely
        log.error("clawcord.startup_failed", error=str(exc), error_type=type(exc).__name__)
        print(f"\n❌  Startup failed: {exc}\n", file=sys.stderr)
        return 1


def cli() -> None:
    """Console-script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    cli()
