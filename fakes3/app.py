from __future__ import annotations

import argparse
import logging
import time
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from .cache import read_cache_summary
from .config import DEFAULT_HOSTNAME, DEFAULT_LOG_LEVEL, DEFAULT_WAIT_TIMEOUT_SECONDS, FakeS3Config
from .remote import DEFAULT_MAX_REQUESTS, RemoteAccount
from .server import FakeS3

console = Console()


SIZE_UNITS = ("B", "KB", "MB", "GB", "TB", "PB")


def format_size(size: int) -> str:
    value = float(size)
    for unit in SIZE_UNITS[:-1]:
        if value < 1024:
            break
        value /= 1024
    else:
        unit = SIZE_UNITS[-1]
    if unit == "B":
        return f"{int(value)} B"
    return f"{value:.1f} {unit}"


def _parse_buckets(args: argparse.Namespace) -> Optional[list[str]]:
    if args.buckets is None and not args.bucket:
        return None
    buckets: list[str] = []
    if args.buckets:
        for part in args.buckets.split(","):
            value = part.strip()
            if value:
                buckets.append(value)
    if args.bucket:
        buckets.extend(args.bucket)
    return buckets


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _run_serve_command(config: FakeS3Config) -> int:
    server = FakeS3(config)
    server.bootstrap()
    console.print(f"fakes3 listening on [bold]{server.endpoint_url}[/bold]")
    try:
        while server.is_running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        server.close()
    return 0


def _run_cache_download(
    cache_path: Path,
    profile: Optional[str],
    region: Optional[str],
    max_requests: int,
) -> int:
    account = RemoteAccount(profile=profile, region=region, max_requests=max_requests)
    stats = account.download_to_cache(cache_path)
    console.print(
        f"Cached {stats.buckets} bucket(s) and {stats.objects} object(s) to {cache_path}"
    )
    return 0


def _run_cache_summary(cache_path: Path) -> int:
    rows = read_cache_summary(cache_path)
    if not rows:
        console.print(f"No cached buckets in {cache_path}")
        return 0
    table = Table(title=str(cache_path))
    table.add_column("Profile")
    table.add_column("Bucket")
    table.add_column("Objects", justify="right")
    table.add_column("Size", justify="right")
    for row in rows:
        table.add_row(row.profile, row.bucket, str(row.objects), format_size(row.total_size))
    console.print(table)
    console.print(f"objects count {sum(row.objects for row in rows)}")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fakes3", description="In-memory S3 emulator")
    parser.add_argument(
        "--log-level",
        default=DEFAULT_LOG_LEVEL,
        help="Log level for fakes3 and the HTTP listener",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the emulator until interrupted")
    serve.add_argument("--buckets", help="Comma-separated bucket names to create")
    serve.add_argument(
        "-b",
        "--bucket",
        action="append",
        help="Bucket to create (can be used multiple times)",
    )
    serve.add_argument("--prefix", default="", help="Key prefix watched by get/wait helpers")
    serve.add_argument("--host", default=DEFAULT_HOSTNAME, help="Interface to bind")
    serve.add_argument("--port", type=int, default=0, help="Port to bind (0 picks one)")
    serve.add_argument("--cache-path", type=Path, help="Cache directory to load at startup")
    serve.add_argument(
        "--wait-timeout",
        type=float,
        default=DEFAULT_WAIT_TIMEOUT_SECONDS,
        help="Seconds wait_for_files polls before giving up",
    )

    cache_parser = subparsers.add_parser("cache", help="Manage listing caches")
    cache_commands = cache_parser.add_subparsers(dest="cache_command", required=True)

    download = cache_commands.add_parser(
        "download", help="Cache bucket and object listings of a live account"
    )
    download.add_argument("cache_path", type=Path)
    download.add_argument("-p", "--profile", help="AWS profile to read with")
    download.add_argument("--region", help="AWS region override for S3 client")
    download.add_argument(
        "--max-requests",
        type=int,
        default=DEFAULT_MAX_REQUESTS,
        help="Pages per bucket before skipping past the current folder",
    )

    summary = cache_commands.add_parser("summary", help="Show what a cache contains")
    summary.add_argument("cache_path", type=Path)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)

    if args.command == "serve":
        buckets = _parse_buckets(args)
        if buckets is None and args.cache_path is None:
            parser.error("serve needs --buckets/--bucket or --cache-path")
        config = FakeS3Config(
            prefix=args.prefix,
            buckets=tuple(buckets) if buckets is not None else None,
            cache_path=args.cache_path,
            hostname=args.host,
            port=args.port,
            wait_timeout=args.wait_timeout,
            log_level=args.log_level,
        )
        return _run_serve_command(config)

    if args.cache_command == "download":
        return _run_cache_download(
            args.cache_path, args.profile, args.region, args.max_requests
        )
    return _run_cache_summary(args.cache_path)


if __name__ == "__main__":
    raise SystemExit(main())
