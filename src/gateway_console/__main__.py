"""CLI entrypoint for gateway-console."""

from __future__ import annotations

import argparse
from importlib import metadata
from pathlib import Path
from typing import Sequence

from .app import GatewayConsoleApp
from .config import ensure_config_dir


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gateway-console", description="AI gateway playground console"
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        type=Path,
        default=None,
        help="Read configuration from PATH instead of the default location",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    """Ensure configuration exists, handle CLI flags, and run the TUI."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        try:
            version = metadata.version("gateway-console")
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        print(f"gateway-console {version}")
        return

    config_path: Path | None = args.config
    if config_path is not None:
        config_path = config_path.expanduser()
        ensure_config_dir(config_path.parent)
    else:
        ensure_config_dir()
    app = GatewayConsoleApp(config_path=config_path)
    app.run()


if __name__ == "__main__":
    main()
