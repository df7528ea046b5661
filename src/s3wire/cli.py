"""CLI entry point for s3wire."""

import argparse
import logging
import sys
from pathlib import Path

import httpx

from s3wire.client import S3Client
from s3wire.config import load_config
from s3wire.errors import S3WireError
from s3wire.logging_config import configure_logging
from s3wire.metrics import init_metrics


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        prog="s3wire",
        description="s3wire - client for S3-compatible object storage",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("s3wire.yaml"),
        help="Path to YAML configuration file (default: s3wire.yaml)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config, default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        default=None,
        choices=["text", "json"],
        help="Log format: 'text' (human-readable) or 'json' (structured)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    ls = commands.add_parser("ls", help="List objects in a bucket")
    ls.add_argument("bucket")
    ls.add_argument("--prefix", default=None, help="Only list keys starting with this prefix")
    ls.add_argument("--recursive", action="store_true", help="Do not group keys by '/'")

    put = commands.add_parser("put", help="Upload a local file")
    put.add_argument("file", type=Path)
    put.add_argument("bucket")
    put.add_argument("object")
    put.add_argument(
        "--part-size",
        type=int,
        default=0,
        help="Multipart part size in bytes (default: derived from file size)",
    )

    stat = commands.add_parser("stat", help="Show object information")
    stat.add_argument("bucket")
    stat.add_argument("object")

    presign = commands.add_parser("presign", help="Print a presigned GET URL")
    presign.add_argument("bucket")
    presign.add_argument("object")
    presign.add_argument(
        "--expires",
        type=int,
        default=None,
        help="Validity in seconds (overrides config, default: 604800)",
    )

    rm = commands.add_parser("rm", help="Remove an object")
    rm.add_argument("bucket")
    rm.add_argument("object")

    return parser.parse_args(argv)


def _run_command(client: S3Client, args: argparse.Namespace, presign_expiry: int) -> None:
    out = sys.stdout
    if args.command == "ls":
        for result in client.list_objects(args.bucket, prefix=args.prefix, recursive=args.recursive):
            obj = result.get()
            if obj.is_dir:
                out.write(f"{'PRE':>30} {obj.object_name}\n")
            else:
                modified = obj.last_modified.strftime("%Y-%m-%d %H:%M:%S") if obj.last_modified else "-"
                out.write(f"{modified:>19} {obj.size:>10} {obj.object_name}\n")
    elif args.command == "put":
        result = client.upload_object(args.bucket, args.object, str(args.file), part_size=args.part_size)
        out.write(f"{result.bucket}/{result.object_name} etag={result.etag}\n")
    elif args.command == "stat":
        info = client.stat_object(args.bucket, args.object)
        out.write(f"Name      : {info.object_name}\n")
        out.write(f"Size      : {info.size}\n")
        out.write(f"ETag      : {info.etag}\n")
        out.write(f"Type      : {info.content_type}\n")
        out.write(f"Modified  : {info.last_modified}\n")
        for key, value in info.metadata.items():
            out.write(f"Meta      : {key}={value}\n")
    elif args.command == "presign":
        expires = args.expires if args.expires is not None else presign_expiry
        out.write(client.presigned_get_object(args.bucket, args.object, expires) + "\n")
    elif args.command == "rm":
        client.remove_object(args.bucket, args.object)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the s3wire CLI.

    Loads configuration, applies CLI overrides, and runs one command.
    Exits with status 1 on a configuration, service or transport error.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].
    """
    args = parse_args(argv)

    # Use a basic stderr logger for config-loading errors
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    logger = logging.getLogger("s3wire")

    try:
        config = load_config(args.config)
    except FileNotFoundError:
        logger.error("Config file not found: %s", args.config)
        sys.exit(1)
    except Exception as exc:
        logger.error("Failed to load config: %s", exc)
        sys.exit(1)

    if args.log_level is not None:
        config.logging.level = args.log_level
    if args.log_format is not None:
        config.logging.format = args.log_format

    configure_logging(level=config.logging.level, fmt=config.logging.format)
    if config.metrics.enabled:
        init_metrics()

    try:
        with S3Client(config.client) as client:
            _run_command(client, args, config.service.presign_expiry)
    except (S3WireError, httpx.TransportError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
