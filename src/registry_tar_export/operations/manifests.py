"""Manifest retrieval and single-platform image resolution."""

import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

import aiohttp

from ..core.types import (
    DOCKER_LAYER_MEDIA_TYPE,
    BearerToken,
    ImageHandle,
    ImageReference,
    LayerDescriptor,
    RegistryConfig,
)
from ..exceptions import ManifestError, RegistryConnectionError
from ..utils.digest import validate_digest

logger = logging.getLogger(__name__)

DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"

IMAGE_MANIFEST_TYPES = (DOCKER_MANIFEST_V2, OCI_MANIFEST)
INDEX_MANIFEST_TYPES = (DOCKER_MANIFEST_LIST, OCI_INDEX)

DEFAULT_PLATFORM = "linux/amd64"


async def get_manifest(
    session: aiohttp.ClientSession,
    config: RegistryConfig,
    repository: str,
    reference: str,
    token: BearerToken | None = None,
) -> tuple[dict[str, Any], str]:
    """Retrieve a manifest or index from the registry.

    Args:
        session: HTTP session
        config: Registry configuration
        repository: Repository name
        reference: Tag or digest reference
        token: Bearer token

    Returns:
        Manifest dictionary and the ``Docker-Content-Digest`` header (or "")

    Raises:
        ManifestError: If retrieval or parsing fails
        RegistryConnectionError: If the registry cannot be reached
    """
    url = f"{config.base_url}/v2/{repository}/manifests/{reference}"
    headers = {"Accept": ", ".join(IMAGE_MANIFEST_TYPES + INDEX_MANIFEST_TYPES)}
    if token:
        headers.update(token.auth_headers())

    try:
        async with session.get(url, headers=headers) as resp:
            if resp.status != 200:
                raise ManifestError(
                    f"Failed to get manifest {repository}:{reference}: "
                    f"status {resp.status}"
                )
            body = await resp.read()
            digest = resp.headers.get("Docker-Content-Digest", "")
            content_type = resp.headers.get("Content-Type", "").split(";")[0].strip()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise RegistryConnectionError(f"Failed to get manifest: {e}") from e

    try:
        manifest = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ManifestError(f"Manifest for {repository}:{reference} is not JSON") from e

    if not isinstance(manifest, dict):
        raise ManifestError("Manifest must be a JSON object")

    if content_type in IMAGE_MANIFEST_TYPES + INDEX_MANIFEST_TYPES:
        manifest.setdefault("mediaType", content_type)
    return manifest, digest


def _platform_matches(platform: dict[str, Any], target: str) -> bool:
    parts = target.split("/")
    if len(parts) < 2:
        return False
    variant = parts[2] if len(parts) >= 3 else ""
    return (
        platform.get("os") == parts[0]
        and platform.get("architecture") == parts[1]
        and platform.get("variant", "") == variant
    )


def select_platform(index: dict[str, Any], platform: str | None = None) -> dict[str, Any]:
    """Pick one manifest descriptor from a manifest list or OCI index.

    Matches ``os/arch[/variant]`` (default ``linux/amd64``), falling back to
    the first descriptor when nothing matches.

    Raises:
        ManifestError: If the index lists no manifests
    """
    manifests = index.get("manifests") or []
    if not manifests:
        raise ManifestError("Image index contains no manifests")

    target = platform or DEFAULT_PLATFORM
    for descriptor in manifests:
        if descriptor.get("platform") and _platform_matches(
            descriptor["platform"], target
        ):
            return descriptor

    logger.warning(
        "No manifest for platform %s, using the first entry (%s)",
        target,
        manifests[0].get("digest", "?"),
    )
    return manifests[0]


def image_from_manifest(
    reference: ImageReference, manifest: dict[str, Any], manifest_digest: str = ""
) -> ImageHandle:
    """Build an image handle from a single-platform manifest.

    Raises:
        ManifestError: If the manifest is not a v2/OCI image manifest or is
            missing fields
    """
    media_type = manifest.get("mediaType", "")
    if manifest.get("schemaVersion") != 2:
        raise ManifestError(
            f"Unsupported manifest schema version {manifest.get('schemaVersion')}"
        )
    if media_type and media_type not in IMAGE_MANIFEST_TYPES:
        raise ManifestError(f"Unsupported manifest media type {media_type}")

    try:
        config = manifest["config"]
        layers = [
            LayerDescriptor(
                digest=layer["digest"],
                size=int(layer["size"]),
                index=index,
                media_type=layer.get("mediaType", DOCKER_LAYER_MEDIA_TYPE),
            )
            for index, layer in enumerate(manifest["layers"])
        ]
        config_digest = config["digest"]
        config_size = int(config["size"])
    except (KeyError, TypeError, ValueError) as e:
        raise ManifestError(f"Malformed image manifest: {e}") from e

    for digest in [config_digest] + [layer.digest for layer in layers]:
        if not validate_digest(digest):
            raise ManifestError(f"Invalid digest in manifest: {digest}")

    return ImageHandle(
        reference=reference,
        config_digest=config_digest,
        config_size=config_size,
        layers=tuple(layers),
        media_type=media_type,
        manifest_digest=manifest_digest or None,
    )


async def resolve_image(
    session: aiohttp.ClientSession,
    config: RegistryConfig,
    reference: ImageReference,
    token: BearerToken | None = None,
    platform: str | None = None,
) -> ImageHandle:
    """Resolve a reference to a single-platform image.

    Manifest lists and OCI indexes go through :func:`select_platform`.
    """
    manifest, digest = await get_manifest(
        session, config, reference.repository, reference.manifest_reference, token
    )

    if manifest.get("mediaType") in INDEX_MANIFEST_TYPES or "manifests" in manifest:
        descriptor = select_platform(manifest, platform)
        logger.info(
            "Selected %s for platform %s",
            descriptor.get("digest"),
            platform or DEFAULT_PLATFORM,
        )
        manifest, digest = await get_manifest(
            session, config, reference.repository, descriptor["digest"], token
        )
        digest = digest or descriptor["digest"]

    image = image_from_manifest(reference, manifest, digest)
    logger.info(
        "Resolved %s/%s with %d layer(s)",
        reference.registry,
        reference.repository,
        len(image.layers),
    )
    return image


def read_image_config(path: str | Path) -> dict[str, Any]:
    """Parse a downloaded config blob.

    Raises:
        ManifestError: If the file is not a JSON object
    """
    try:
        config = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ManifestError(f"Cannot parse image config {path}: {e}") from e
    if not isinstance(config, dict):
        raise ManifestError(f"Image config {path} is not a JSON object")
    return config


def attach_diff_ids(image: ImageHandle, image_config: dict[str, Any]) -> ImageHandle:
    """Return ``image`` with ``diff_id`` set on each layer from the config.

    Layers are left unchanged when the config's diff_ids do not line up.
    """
    diff_ids = (image_config.get("rootfs") or {}).get("diff_ids") or []
    if len(diff_ids) != len(image.layers):
        return image

    layers = tuple(
        replace(layer, diff_id=diff_id) for layer, diff_id in zip(image.layers, diff_ids)
    )
    return replace(image, layers=layers)


def declared_layer_count(image_config: dict[str, Any]) -> int | None:
    """Number of layers the config's ``rootfs.diff_ids`` declares, if any."""
    rootfs = image_config.get("rootfs")
    if not isinstance(rootfs, dict) or not isinstance(rootfs.get("diff_ids"), list):
        return None
    return len(rootfs["diff_ids"])
