"""Command line for running an embedded PostgreSQL server in the foreground."""

from __future__ import annotations

import argparse
import sys
import threading
from importlib import metadata
from pathlib import Path

from .errors import PgEmbedError
from .instance import PostgresInstance
from .logger import LogLevel, init_logger
from .server import find_installation
from .settings import load_settings


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="pg-embedded", description=__doc__)
    parser.add_argument("--config", type=Path, default=None, help="TOML file with a [postgres] table")
    parser.add_argument(
        "--log-level",
        choices=[level.value for level in LogLevel],
        default=LogLevel.INFO.value,
        help="Verbosity of pg_embedded logging",
    )
    subcommands = parser.add_subparsers(dest="command", required=True)

    start = subcommands.add_parser("start", help="Run a server until interrupted")
    start.add_argument("--host", default=None, help="Address to listen on")
    start.add_argument("--port", type=int, default=None, help="Port to listen on (0 picks a free one)")
    start.add_argument("--username", default=None, help="Superuser name")
    start.add_argument("--password", default=None, help="Superuser password")
    start.add_argument("--database", dest="database_name", default=None, help="Database to create and connect to")
    start.add_argument("--data-dir", type=Path, default=None, help="Data directory (temporary when omitted)")
    start.add_argument("--installation-dir", type=Path, default=None, help="PostgreSQL installation to use")
    start.add_argument("--version-constraint", dest="version", default=None, help="Required server version, e.g. '16' or '>=15'")
    start.add_argument("--timeout", type=float, default=None, help="Seconds to wait for startup")
    start.add_argument("--persistent", action="store_true", default=None, help="Keep the data directory on exit")

    version = subcommands.add_parser("version", help="Show package and server versions")
    version.add_argument("--installation-dir", type=Path, default=None, help="PostgreSQL installation to inspect")
    return parser.parse_args(argv)


def wait_for_interrupt() -> None:
    threading.Event().wait()


def run_start(args: argparse.Namespace) -> int:
    settings = load_settings(
        args.config,
        host=args.host,
        port=args.port,
        username=args.username,
        password=args.password,
        database_name=args.database_name,
        data_dir=args.data_dir,
        installation_dir=args.installation_dir,
        version=args.version,
        timeout=args.timeout,
        persistent=args.persistent,
    )
    instance = PostgresInstance(settings)
    try:
        instance.start()
        info = instance.connection_info
        print(f"PostgreSQL {instance.get_postgresql_version()} is running.")
        print(f"  URL:      {info.safe_connection_string}")
        print(f"  JDBC:     {info.safe_jdbc_url}")
        print(f"  Data dir: {instance.data_dir}")
        print("Press Ctrl+C to stop.")
        try:
            wait_for_interrupt()
        except KeyboardInterrupt:
            print("Stopping...")
    finally:
        instance.cleanup()
    return 0


def run_version(args: argparse.Namespace) -> int:
    try:
        package_version = metadata.version("pg-embedded")
    except metadata.PackageNotFoundError:
        package_version = "unknown"
    print(f"pg-embedded {package_version}")
    installation = find_installation(args.installation_dir)
    print(f"PostgreSQL {installation.version} ({installation.bin_dir})")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    init_logger(args.log_level)
    try:
        if args.command == "start":
            return run_start(args)
        return run_version(args)
    except PgEmbedError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


__all__ = ["main", "parse_args"]
