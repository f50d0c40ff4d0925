"""Docker tar archive assembly."""

import asyncio
import json
import logging
import os
import tarfile
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import BinaryIO

from ..exceptions import TarAssemblyError
from .manifest import MANIFEST_FILE, REPOSITORIES_FILE
from .models import ManifestEntry

logger = logging.getLogger(__name__)


@dataclass
class AssemblyReport:
    """What went into the archive and which layer files were left out."""

    archive: Path | None
    members: list[str] = field(default_factory=list)
    skipped_layers: list[str] = field(default_factory=list)


def read_manifest_entries(source_dir: Path) -> list[ManifestEntry]:
    """Read and parse ``manifest.json`` from a working directory.

    Raises:
        TarAssemblyError: If the file is missing or malformed
    """
    manifest_path = source_dir / MANIFEST_FILE
    if not manifest_path.is_file():
        raise TarAssemblyError(f"{MANIFEST_FILE} not found in {source_dir}")

    try:
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise TarAssemblyError(f"Cannot read {manifest_path}: {e}") from e

    if not isinstance(data, list) or not data:
        raise TarAssemblyError(f"{MANIFEST_FILE} must be a non-empty array")

    try:
        return [ManifestEntry.from_dict(entry) for entry in data]
    except (KeyError, TypeError, AttributeError) as e:
        raise TarAssemblyError(f"Invalid manifest entry: {e}") from e


def _resolve_member(source_dir: Path, reference: str) -> Path:
    path = (source_dir / reference).resolve()
    if not path.is_relative_to(source_dir.resolve()):
        raise TarAssemblyError(f"Manifest reference escapes {source_dir}: {reference}")
    return path


def _add_directory(tar: tarfile.TarFile, name: str) -> None:
    info = tarfile.TarInfo(f"{name}/")
    info.type = tarfile.DIRTYPE
    info.mode = 0o755
    info.mtime = int(time.time())
    tar.addfile(info)


def _check_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise TarAssemblyError("Archive assembly was cancelled")


def _write_archive(
    tar: tarfile.TarFile,
    source_dir: Path,
    entries: list[ManifestEntry],
    cancel_event: threading.Event | None = None,
) -> tuple[list[str], list[str]]:
    members: list[str] = []
    skipped: list[str] = []

    for config in dict.fromkeys(entry.config for entry in entries):
        _check_cancelled(cancel_event)
        tar.add(_resolve_member(source_dir, config), arcname=config, recursive=False)
        members.append(config)

    for name in (MANIFEST_FILE, REPOSITORIES_FILE):
        tar.add(source_dir / name, arcname=name, recursive=False)
        members.append(name)

    directories: set[str] = set()
    for reference in dict.fromkeys(
        layer for entry in entries for layer in entry.layers
    ):
        _check_cancelled(cancel_event)
        path = _resolve_member(source_dir, reference)
        if not path.is_file():
            logger.warning(
                "Layer %s is not present locally and is left out of the archive; "
                "the archive only loads where this layer already exists",
                reference,
            )
            skipped.append(reference)
            continue

        parent = str(PurePosixPath(reference).parent)
        if parent != "." and parent not in directories:
            _add_directory(tar, parent)
            directories.add(parent)
            members.append(f"{parent}/")

        tar.add(path, arcname=reference, recursive=False)
        members.append(reference)
        logger.debug("Added layer %s", reference)

    return members, skipped


def partial_archive_path(archive_path: Path) -> Path:
    """Temporary path an archive is written to before it is moved into place."""
    return archive_path.with_name(f"{archive_path.name}.part")


def build_archive(
    source_dir: str | Path,
    output: str | Path | BinaryIO,
    compress: bool = False,
    cancel_event: threading.Event | None = None,
) -> AssemblyReport:
    """Write the working directory as a single Docker tar archive (sync).

    A path output is written to a ``.part`` file first and only renamed to
    ``output`` once the archive is complete.

    Args:
        source_dir: Directory holding manifest.json, repositories, config and
            layer files
        output: Archive path or writable binary file object
        compress: Gzip the archive
        cancel_event: Checked between members; once set, assembly stops and
            no archive is left at ``output``

    Returns:
        Assembly report

    Raises:
        TarAssemblyError: If a required file is missing, writing fails or
            assembly is cancelled
    """
    source_dir = Path(source_dir)
    entries = read_manifest_entries(source_dir)

    if not (source_dir / REPOSITORIES_FILE).is_file():
        raise TarAssemblyError(f"{REPOSITORIES_FILE} not found in {source_dir}")
    for entry in entries:
        if not _resolve_member(source_dir, entry.config).is_file():
            raise TarAssemblyError(f"Config file {entry.config} not found in {source_dir}")

    mode = "w:gz" if compress else "w"
    archive_path = None if hasattr(output, "write") else Path(output)
    partial_path = None if archive_path is None else partial_archive_path(archive_path)

    try:
        if partial_path is None:
            tar = tarfile.open(fileobj=output, mode=mode)
        else:
            partial_path.parent.mkdir(parents=True, exist_ok=True)
            tar = tarfile.open(partial_path, mode)
        with tar:
            members, skipped = _write_archive(tar, source_dir, entries, cancel_event)
        if partial_path is not None:
            _check_cancelled(cancel_event)
            os.replace(partial_path, archive_path)
    except (OSError, tarfile.TarError) as e:
        if partial_path is not None:
            partial_path.unlink(missing_ok=True)
        raise TarAssemblyError(f"Failed to write archive: {e}") from e
    except TarAssemblyError:
        if partial_path is not None:
            partial_path.unlink(missing_ok=True)
        raise

    logger.info(
        "Archive written with %d member(s), %d layer(s) left out",
        len(members),
        len(skipped),
    )
    return AssemblyReport(archive=archive_path, members=members, skipped_layers=skipped)


async def assemble_archive(
    source_dir: str | Path,
    output: str | Path | BinaryIO,
    compress: bool = False,
) -> AssemblyReport:
    """Assemble the archive in the default executor.

    Cancelling the caller stops the writer thread and waits for it, so a
    cancelled assembly never leaves an archive at ``output``.

    See :func:`build_archive`.
    """
    cancel_event = threading.Event()
    loop = asyncio.get_event_loop()
    future = loop.run_in_executor(
        None, build_archive, source_dir, output, compress, cancel_event
    )
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        cancel_event.set()
        await asyncio.wait([future])
        if not future.cancelled() and future.exception() is None:
            # The writer finished before it saw the cancellation
            report = future.result()
            if report.archive is not None:
                report.archive.unlink(missing_ok=True)
        raise
