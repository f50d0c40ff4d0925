"""Command-line entry point."""

import argparse
import asyncio
import logging
from dataclasses import replace

from .config import ExportConfig, load_config
from .exceptions import RegistryError
from .export import export_image
from .tar.manifest import LAYOUTS
from .utils.host_layers import load_known_digests
from .utils.log import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="registry-tar-export",
        description=(
            "Export a registry image as a docker load compatible tar, "
            "skipping layers the target host already has."
        ),
    )
    parser.add_argument("image", help="image reference, e.g. registry.example.com/app:v1")
    parser.add_argument("-o", "--output", help="output archive path")
    parser.add_argument("--platform", help="os/arch[/variant] for multi-platform images")
    parser.add_argument(
        "--known-digests",
        metavar="FILE",
        help="file listing layer digests already present on the target host",
    )
    parser.add_argument("--work-dir", help="directory for downloaded blobs")
    parser.add_argument("--concurrency", type=int, help="parallel layer downloads")
    parser.add_argument("--layout", choices=LAYOUTS, help="layer file layout in the archive")
    parser.add_argument("--compress", action="store_true", default=None, help="gzip the archive")
    parser.add_argument(
        "--uncompressed-layers",
        action="store_true",
        default=None,
        help="store layers as uncompressed layer.tar files",
    )
    parser.add_argument("--config", help="JSON configuration file")
    parser.add_argument(
        "--insecure-registry",
        action="append",
        default=[],
        metavar="HOST",
        help="registry host to reach over plain HTTP (repeatable)",
    )
    parser.add_argument("--username", help="registry username for token requests")
    parser.add_argument("--password", help="registry password for token requests")
    parser.add_argument("--timeout", type=int, help="per-request timeout in seconds")
    parser.add_argument("--deadline", type=float, help="overall run deadline in seconds")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARN, ERROR or FATAL")
    return parser


def config_from_args(args: argparse.Namespace) -> ExportConfig:
    """Layer command-line options over the loaded configuration."""
    config = load_config(args.config)
    overrides = {
        "output": args.output,
        "platform": args.platform,
        "work_dir": args.work_dir,
        "concurrency": args.concurrency,
        "layout": args.layout,
        "compress": args.compress,
        "uncompressed_layers": args.uncompressed_layers,
        "username": args.username,
        "password": args.password,
        "timeout": args.timeout,
        "deadline": args.deadline,
        "log_level": args.log_level,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    if args.insecure_registry:
        overrides["insecure_registries"] = config.insecure_registries + tuple(
            args.insecure_registry
        )
    return replace(config, **overrides).validate()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = config_from_args(args)
    except RegistryError as e:
        setup_logging("INFO")
        logger.error("%s", e)
        return 1

    setup_logging(config.log_level)

    try:
        known = load_known_digests(args.known_digests) if args.known_digests else set()
        result = asyncio.run(export_image(args.image, known_digests=known, config=config))
    except RegistryError as e:
        logger.error("Export failed: %s", e)
        return 1
    except KeyboardInterrupt:
        logger.error("Interrupted; partial downloads are kept for the next run")
        return 130

    logger.info(
        "Wrote %s: %d layer(s) in manifest, %d downloaded, %d left out",
        result.archive_path,
        len(result.manifest.layers),
        len(result.plan.to_fetch),
        len(result.skipped_layers),
    )
    return 0
