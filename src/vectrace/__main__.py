"""Command-line entry point: ``python -m vectrace``."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from vectrace import logger
from vectrace.config import load_config
from vectrace.demo import DEFAULT_MESSAGES, run_demo
from vectrace.errors import VectraceError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vectrace",
        description="Run the vector-clock client/server demo over UDP.",
    )
    parser.add_argument("--messages", type=int, default=DEFAULT_MESSAGES)
    parser.add_argument("--host", default=None)
    parser.add_argument("--server-port", type=int, default=8080)
    parser.add_argument("--client-port", type=int, default=8081)
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=Path.cwd(),
        help="Directory for server-Log.txt and client-Log.txt",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=(
            "vectrace.toml path. The demo reads [transport] host and "
            "max_datagram_size, [process] warn_dynamic_join and [logging]; "
            "ports and log files come from the options above"
        ),
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warn", "error", "off"],
        default=None,
    )
    parser.add_argument("--timeout", type=float, default=5.0)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
        config.logging.apply()
        if args.log_level is not None:
            logger.configure(level=args.log_level)

        result = asyncio.run(
            run_demo(
                args.messages,
                host=args.host or config.transport.host,
                server_port=args.server_port,
                client_port=args.client_port,
                log_dir=args.log_dir,
                timeout=args.timeout,
                warn_on_dynamic_join=(
                    config.codec.warn_dynamic_join if config.codec else False
                ),
                max_datagram_size=config.transport.max_datagram_size,
            )
        )
    except (VectraceError, OSError, TimeoutError) as e:
        logger.error("Demo failed", error=str(e))
        return 1

    logger.info("Demo finished", replies=result.replies)
    return 0


if __name__ == "__main__":
    sys.exit(main())
