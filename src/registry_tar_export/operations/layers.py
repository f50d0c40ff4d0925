"""Expansion of downloaded layer blobs into uncompressed layer.tar files."""

import asyncio
import gzip
import hashlib
import logging
import os
import shutil
import zlib
from collections.abc import Sequence
from pathlib import Path

from ..core.types import LayerDescriptor
from ..exceptions import ChecksumError, FileOperationError
from ..tar.manifest import LAYOUT_FLAT, layer_reference
from ..utils.digest import validate_digest, verify_file_digest

logger = logging.getLogger(__name__)

COMPRESSED_SUFFIX = ".gz"
GZIP_MAGIC = b"\x1f\x8b"
COPY_BUFFER_SIZE = 1024 * 1024


def compressed_reference(digest: str, layout: str = LAYOUT_FLAT) -> str:
    """Work directory path of a layer blob kept in its registry form."""
    return layer_reference(digest, layout) + COMPRESSED_SUFFIX


class _DigestWriter:
    """File wrapper that hashes and counts what passes through it."""

    def __init__(self, file):
        self._file = file
        self.hasher = hashlib.sha256()
        self.size = 0

    def write(self, data: bytes) -> int:
        self.hasher.update(data)
        self.size += len(data)
        return self._file.write(data)

    @property
    def digest(self) -> str:
        return f"sha256:{self.hasher.hexdigest()}"


def expand_blob(source: Path, dest: Path, diff_id: str | None = None) -> int:
    """Write the uncompressed content of ``source`` to ``dest`` (sync).

    Gzip blobs are decompressed, anything else is copied as is. Output goes to
    a ``.part`` file that replaces ``dest`` only after ``diff_id`` matched.

    Returns:
        Uncompressed size in bytes

    Raises:
        ChecksumError: If the content does not match ``diff_id``
        FileOperationError: If the blob cannot be read or decompressed
    """
    partial = dest.with_name(f"{dest.name}.part")
    try:
        with open(source, "rb") as f:
            opener = gzip.open if f.read(2) == GZIP_MAGIC else open
        with opener(source, "rb") as src, open(partial, "wb") as out:
            writer = _DigestWriter(out)
            shutil.copyfileobj(src, writer, COPY_BUFFER_SIZE)
        if diff_id is not None and writer.digest != diff_id:
            raise ChecksumError(
                f"Uncompressed {dest.name} has digest {writer.digest}, expected {diff_id}"
            )
        os.replace(partial, dest)
    except (OSError, EOFError, zlib.error) as e:
        raise FileOperationError(f"Cannot expand {source.name}: {e}") from e
    finally:
        partial.unlink(missing_ok=True)
    return writer.size


async def expand_layer(
    blob_path: str | Path, dest: str | Path, layer: LayerDescriptor
) -> int:
    """Expand one downloaded layer blob into ``dest``.

    An existing ``dest`` that already matches the layer's diff_id is reused.

    Returns:
        Uncompressed size in bytes
    """
    blob_path, dest = Path(blob_path), Path(dest)
    diff_id = layer.diff_id if layer.diff_id and validate_digest(layer.diff_id) else None

    if diff_id and dest.is_file() and await verify_file_digest(dest, diff_id):
        logger.info("Layer %d already expanded at %s", layer.index + 1, dest)
        return dest.stat().st_size
    if diff_id is None:
        logger.warning(
            "Layer %d has no diff_id; its uncompressed content is not verified",
            layer.index + 1,
        )

    loop = asyncio.get_event_loop()
    size = await loop.run_in_executor(None, expand_blob, blob_path, dest, diff_id)
    logger.debug("Expanded layer %d to %d bytes", layer.index + 1, size)
    return size


async def expand_layers(
    layers: Sequence[LayerDescriptor],
    work_dir: str | Path,
    layout: str = LAYOUT_FLAT,
) -> dict[str, int]:
    """Expand the downloaded blobs of ``layers`` next to their blob files.

    Returns:
        Uncompressed size by layer digest
    """
    work_dir = Path(work_dir)
    sizes: dict[str, int] = {}
    for layer in layers:
        if layer.digest in sizes:
            continue
        sizes[layer.digest] = await expand_layer(
            work_dir / compressed_reference(layer.digest, layout),
            work_dir / layer_reference(layer.digest, layout),
            layer,
        )
    logger.info("Expanded %d layer(s)", len(sizes))
    return sizes
