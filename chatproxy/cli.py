"""CLI entry point for the chat-completion logging proxy."""

import argparse
from pathlib import Path

import uvicorn

from .config import load_config
from .server import create_app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Transparent chat-completion proxy that records transcripts"
    )
    parser.add_argument(
        "--upstream",
        type=str,
        default=None,
        help="Upstream server URL (required unless set in the config file)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to run the proxy server on (default: 8800)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Directory to save transcripts (default: ./logs)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Optional YAML configuration file",
    )
    parser.add_argument(
        "--env-file",
        type=str,
        default=None,
        help="Path to environment file (default: auto-load .env if available)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Log full transcript contents",
    )
    return parser


def cli_overrides(args: argparse.Namespace) -> dict:
    """Map parsed flags onto config sections; unset flags are None."""
    return {
        "serve": {"host": args.host, "port": args.port, "debug": args.debug},
        "upstream": {"url": args.upstream},
        "transcripts": {"log_dir": args.log_dir},
    }


def main():
    """Main entry point for the proxy CLI."""
    parser = build_parser()
    args = parser.parse_args()

    try:
        config = load_config(
            args.config, env_file=args.env_file, overrides=cli_overrides(args)
        )
    except (FileNotFoundError, ValueError) as e:
        parser.error(str(e))

    log_dir = Path(config.transcripts.log_dir)
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        parser.error(f"Failed to create log directory {log_dir}: {e}")

    host = config.serve.host
    port = config.serve.port
    print(f"Starting proxy server on {host}:{port}, upstream: {config.upstream.url}")
    print(f"Transcripts: {log_dir}")

    app = create_app(config)
    uvicorn.run(app, host=host, port=port)
