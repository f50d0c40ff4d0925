"""Resumable blob download operations."""

import asyncio
import logging
import re
from pathlib import Path

import aiofiles
import aiohttp

from ..core.retry import RetryPolicy
from ..core.types import (
    BearerToken,
    DownloadState,
    ImageHandle,
    LayerDescriptor,
    RegistryConfig,
)
from ..exceptions import (
    BlobDownloadError,
    ChecksumError,
    FileOperationError,
    RegistryConnectionError,
)
from ..tar.manifest import LAYOUT_FLAT, config_reference, layer_reference
from ..utils.digest import validate_digest, verify_file_digest

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024

CONTENT_RANGE_PATTERN = re.compile(r"^bytes (\d+)-\d+/(?:\d+|\*)$")

# Failures retried within a single fetch
TRANSIENT_ERRORS = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    OSError,
    RegistryConnectionError,
    FileOperationError,
    BlobDownloadError,
)


def blob_url(config: RegistryConfig, repository: str, digest: str) -> str:
    return f"{config.base_url}/v2/{repository}/blobs/{digest}"


def short_digest(digest: str) -> str:
    return digest.partition(":")[2][:12] or digest[:12]


def _remove(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        raise FileOperationError(f"Cannot remove {path}: {e}") from e


def _truncate(path: Path) -> None:
    try:
        with open(path, "r+b") as f:
            f.truncate(0)
    except OSError as e:
        raise FileOperationError(f"Cannot truncate {path}: {e}") from e


def _range_start(content_range: str) -> int | None:
    match = CONTENT_RANGE_PATTERN.match(content_range.strip())
    return int(match.group(1)) if match else None


async def _fetch_once(
    session: aiohttp.ClientSession,
    url: str,
    dest: Path,
    offset: int,
    token: BearerToken | None,
    chunk_size: int,
) -> None:
    """Issue one GET and write the body to ``dest``.

    Appends on 206, rewrites from scratch on 200.
    """
    headers = token.auth_headers() if token else {}
    if offset > 0:
        headers["Range"] = f"bytes={offset}-"

    async with session.get(url, headers=headers) as resp:
        if resp.status == 206 and offset > 0:
            content_range = resp.headers.get("Content-Range")
            if content_range is not None and _range_start(content_range) != offset:
                raise RegistryConnectionError(
                    f"Server answered {url} with range {content_range!r}, "
                    f"expected start {offset}"
                )
            mode = "ab"
        elif resp.status in (200, 206):
            if offset > 0:
                logger.info(
                    "Server ignored range request for %s, restarting from zero", url
                )
            mode = "wb"
        else:
            raise RegistryConnectionError(
                f"Unexpected status {resp.status} fetching {url}"
            )

        async with aiofiles.open(dest, mode) as f:
            async for chunk in resp.content.iter_chunked(chunk_size):
                await f.write(chunk)


async def _verify_download(dest: Path, expected_size: int, expected_digest: str) -> None:
    size = dest.stat().st_size
    if size < expected_size:
        raise BlobDownloadError(
            f"Incomplete download of {dest.name}: {size} of {expected_size} bytes"
        )
    if size > expected_size:
        # Next attempt truncates
        raise BlobDownloadError(
            f"Download of {dest.name} overran: {size} of {expected_size} bytes"
        )
    if not await verify_file_digest(dest, expected_digest):
        raise ChecksumError(f"Digest mismatch for {dest.name}, expected {expected_digest}")


async def fetch_blob(
    session: aiohttp.ClientSession,
    url: str,
    dest: str | Path,
    expected_digest: str,
    expected_size: int,
    token: BearerToken | None = None,
    retry_policy: RetryPolicy | None = None,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> Path:
    """Download a blob to ``dest``, resuming from any bytes already there.

    On success the file is exactly ``expected_size`` bytes and matches
    ``expected_digest``. On failure the partial file is left in place so a
    later run can resume it.

    Args:
        session: HTTP session
        url: Blob URL
        dest: Destination file path
        expected_digest: Content digest (sha256:...)
        expected_size: Size in bytes from the manifest
        token: Bearer token shared by the run
        retry_policy: Attempt budget and backoff
        chunk_size: Read size for the response body

    Returns:
        Destination path

    Raises:
        ValueError: If the digest format is invalid
        FileOperationError: If the destination directory cannot be created
        BlobDownloadError: When the retry budget is exhausted
    """
    if not validate_digest(expected_digest):
        raise ValueError(f"Invalid digest format: {expected_digest}")

    dest = Path(dest)
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FileOperationError(f"Cannot create {dest.parent}: {e}") from e

    policy = retry_policy or RetryPolicy()
    name = short_digest(expected_digest)

    state = DownloadState.from_path(dest, expected_size, expected_digest)
    if dest.exists() and state.is_complete:
        if await verify_file_digest(dest, expected_digest):
            logger.info("Blob %s already present at %s", name, dest)
            return dest
        logger.warning("Blob %s at %s is corrupt, downloading again", name, dest)
        _remove(dest)

    last_error: BaseException | None = None
    for attempt in policy.attempts():
        state = DownloadState.from_path(dest, expected_size, expected_digest)
        try:
            if state.is_overlong:
                logger.warning(
                    "Blob %s has %d bytes on disk, more than %d expected; truncating",
                    name,
                    state.bytes_on_disk,
                    expected_size,
                )
                _truncate(dest)
                state.bytes_on_disk = 0

            if not dest.exists() or state.remaining > 0:
                if state.bytes_on_disk:
                    logger.info(
                        "Resuming blob %s from byte %d of %d",
                        name,
                        state.bytes_on_disk,
                        expected_size,
                    )
                await _fetch_once(
                    session, url, dest, state.bytes_on_disk, token, chunk_size
                )

            await _verify_download(dest, expected_size, expected_digest)
            logger.debug("Blob %s verified", name)
            return dest

        except ChecksumError as e:
            last_error = e
            try:
                _remove(dest)
            except FileOperationError as remove_error:
                last_error = remove_error
        except TRANSIENT_ERRORS as e:
            last_error = e

        logger.warning(
            "Blob %s attempt %d/%d failed: %s",
            name,
            attempt,
            policy.max_attempts,
            last_error,
        )
        await policy.wait(attempt)

    raise BlobDownloadError(
        f"Failed to download blob {expected_digest} after "
        f"{policy.max_attempts} attempts: {last_error}"
    ) from last_error


async def fetch_config(
    session: aiohttp.ClientSession,
    config: RegistryConfig,
    image: ImageHandle,
    dest_dir: str | Path,
    token: BearerToken | None = None,
    retry_policy: RetryPolicy | None = None,
) -> Path:
    """Download the image config blob to ``<config-digest>.json``."""
    dest = Path(dest_dir) / config_reference(image.config_digest)
    return await fetch_blob(
        session,
        blob_url(config, image.reference.repository, image.config_digest),
        dest,
        image.config_digest,
        image.config_size,
        token=token,
        retry_policy=retry_policy,
    )


async def download_layers(
    session: aiohttp.ClientSession,
    config: RegistryConfig,
    repository: str,
    layers: list[LayerDescriptor] | tuple[LayerDescriptor, ...],
    dest_dir: str | Path,
    token: BearerToken | None = None,
    retry_policy: RetryPolicy | None = None,
    concurrency: int = 1,
    layout: str = LAYOUT_FLAT,
    suffix: str = "",
) -> list[Path]:
    """Download layers with bounded parallelism.

    Each layer goes to its layout path plus ``suffix``. The first failure
    cancels the remaining downloads and is re-raised.

    Returns:
        Destination paths in the order of ``layers``
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    dest_dir = Path(dest_dir)
    semaphore = asyncio.Semaphore(concurrency)

    async def fetch_layer(layer: LayerDescriptor) -> Path:
        async with semaphore:
            dest = dest_dir / (layer_reference(layer.digest, layout) + suffix)
            logger.info(
                "Downloading layer %d (%s, %d bytes)",
                layer.index + 1,
                short_digest(layer.digest),
                layer.size,
            )
            path = await fetch_blob(
                session,
                blob_url(config, repository, layer.digest),
                dest,
                layer.digest,
                layer.size,
                token=token,
                retry_policy=retry_policy,
            )
            return path

    # Repeated digests share one destination file
    unique = {}
    for layer in layers:
        unique.setdefault(layer.digest, layer)

    tasks = [asyncio.ensure_future(fetch_layer(layer)) for layer in unique.values()]
    try:
        fetched = await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    paths = dict(zip(unique, fetched))
    logger.info("Downloaded %d layer(s)", len(unique))
    return [paths[layer.digest] for layer in layers]
