"""Command line entry point.

    todo-subscriptions [serve] [--host H] [--port P] [--reload]
    todo-subscriptions sweep

``serve`` (the default) runs the API under uvicorn. ``sweep`` runs one expiry
sweep against DATABASE_URL and exits, for deployments that disable the
in-process sweeper and schedule it externally instead.
"""

import argparse
import os
import sys
from typing import Optional, Sequence

import uvicorn

from todo_subscriptions import __version__

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="todo-subscriptions",
        description="Paid-plan subscriptions for the todo service, backed by Paystack",
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=["serve", "sweep"],
        default="serve",
        help="serve: run the HTTP API (default); sweep: demote lapsed subscriptions once and exit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "config/billing.yaml"),
        help="Path to billing.yaml (default: config/billing.yaml)",
    )
    parser.add_argument("--log-level", choices=LOG_LEVELS, default=os.getenv("LOG_LEVEL", "INFO"))
    parser.add_argument("--log-format", choices=["json", "console"], default=os.getenv("LOG_FORMAT", "json"))
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"), help="serve only")
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")), help="serve only")
    parser.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("RELOAD", "false").lower() == "true",
        help="serve only: auto-reload on code changes",
    )
    return parser


def serve(args: argparse.Namespace) -> int:
    if args.log_format == "console":
        print(f"Todo Subscriptions v{__version__} on {args.host}:{args.port} (config: {args.config})")

    try:
        uvicorn.run(
            "todo_subscriptions.main:app",
            host=args.host,
            port=args.port,
            log_level=args.log_level.lower(),
            reload=args.reload,
            access_log=False,  # RequestLoggingMiddleware logs access
        )
    except KeyboardInterrupt:
        print("\nShutting down gracefully...")
    return 0


def sweep(args: argparse.Namespace) -> int:
    from todo_subscriptions.config import ConfigurationError, get_settings
    from todo_subscriptions.logging_config import configure_logging_from_env
    from todo_subscriptions.services.expiry_sweeper import ExpirySweeper

    configure_logging_from_env()
    try:
        settings = get_settings()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    if not settings.database_url:
        print("DATABASE_URL is not set; an in-memory store has nothing to sweep", file=sys.stderr)
        return 2

    expired = ExpirySweeper().sweep()
    print(f"Expired {expired} subscription(s)")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    # Read by create_app() and load_settings(), including in uvicorn's reload process
    os.environ["LOG_LEVEL"] = args.log_level
    os.environ["LOG_FORMAT"] = args.log_format
    os.environ["CONFIG_PATH"] = args.config

    handler = {"serve": serve, "sweep": sweep}[args.command]
    try:
        sys.exit(handler(args))
    except Exception as e:
        print(f"{args.command} failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
