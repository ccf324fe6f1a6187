"""matrix-botkit command line entry point."""

from __future__ import annotations

import argparse
import functools
import sys
from pathlib import Path

import anyio

from . import __version__
from .bot import MatrixBot
from .client import MatrixClient
from .commands import default_commands, register_commands
from .config import DEFAULT_CONFIG_PATH, BotConfig, ConfigError, load_config
from .logging_config import LOG_LEVELS, get_logger, setup_logging

logger = get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="matrix-botkit")
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    sub = parser.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="Log in and serve commands until quit")
    run.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help="Path to the bot's TOML config (default: %(default)s)",
    )
    run.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default="info",
        help="Log level (default: %(default)s)",
    )
    run.add_argument(
        "--global-rename",
        action="store_true",
        default=False,
        help="Let bot admins change the display name globally with the name command.",
    )
    run.add_argument(
        "--default-command",
        default=None,
        help="Command to run when the command name is unknown (e.g. help).",
    )
    return parser


async def run_bot(
    config: BotConfig,
    *,
    global_rename: bool = False,
    default_command: str | None = None,
) -> int:
    client = MatrixClient.from_config(config)
    try:
        if not await client.login():
            return 1
        bot = MatrixBot(client, config)
        register_commands(
            bot,
            default_commands(config, globally=global_rename),
            default_command=default_command,
        )
        logged_out = await bot.start_blocking()
        logger.info("bot.exit", logged_out=logged_out)
        return 0
    finally:
        await client.close()


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "run":
        setup_logging(args.log_level)
        try:
            config = load_config(Path(args.config))
        except ConfigError as exc:
            parser.exit(2, f"error: {exc}\n")
        rc = anyio.run(
            functools.partial(
                run_bot,
                config,
                global_rename=bool(args.global_rename),
                default_command=args.default_command,
            )
        )
        raise SystemExit(rc)

    parser.error(f"unknown command: {args.cmd}")


if __name__ == "__main__":  # pragma: no cover
    main(sys.argv[1:])
