"""
Relying Party Server Command Line

Commands:
  serve   Run the HTTP server until SIGINT/SIGTERM
  config  Print the effective configuration as YAML

Usage:
    # Serve with config.yaml from the project root
    python scripts/run_server.py serve

    # Serve with another config file on another address
    python scripts/run_server.py serve --config deploy/config.yaml --bind :8443

    # Show the configuration a server would start with
    python scripts/run_server.py config --config deploy/config.yaml
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import yaml

# Add project root to path
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

from authn.config import get_config, load_config, set_config
from authn_api.app import configure_logging
from authn_api.server import Server, ShutdownError

logger = logging.getLogger("run_server")


def _load(config_path: Optional[str]):
    try:
        if config_path:
            return set_config(load_config(config_path))
        return get_config()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return None


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the server in the foreground."""
    config = _load(args.config)
    if config is None:
        return 1
    configure_logging(config)

    try:
        server = Server(config)
        server.serve(bind_addr=args.bind)
    except ShutdownError as e:
        for error in e.errors:
            logger.error(f"  {error!r}")
        logger.error(f"Server did not shut down cleanly: {e}")
        return 1
    except (OSError, RuntimeError, ValueError) as e:
        logger.error(f"Could not serve: {e}")
        return 1

    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Print the effective configuration."""
    config = _load(args.config)
    if config is None:
        return 1
    print(yaml.safe_dump(config, default_flow_style=False, sort_keys=False), end="")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="WebAuthn relying party server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP server.")
    serve.add_argument(
        "--config", type=str, default=None,
        help="Path to a config.yaml (default: the one in the project root).",
    )
    serve.add_argument(
        "--bind", type=str, default=None,
        help="host:port to listen on, overriding server.bind_addr.",
    )
    serve.set_defaults(func=cmd_serve)

    show = subparsers.add_parser("config", help="Print the effective configuration.")
    show.add_argument(
        "--config", type=str, default=None,
        help="Path to a config.yaml (default: the one in the project root).",
    )
    show.set_defaults(func=cmd_config)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
