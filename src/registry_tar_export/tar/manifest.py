"""Builders for ``manifest.json`` and ``repositories``."""

import json
import logging
from collections.abc import Sequence
from pathlib import Path

from ..core.types import LayerDescriptor
from ..exceptions import FileOperationError, ValidationError
from .models import ManifestEntry, RepositoriesEntry, merge_repositories
from .tags import format_repo_tag, is_digest_only, parse_repository_tag

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"
REPOSITORIES_FILE = "repositories"

LAYOUT_FLAT = "flat"
LAYOUT_DIRECTORY = "directory"
LAYOUTS = (LAYOUT_FLAT, LAYOUT_DIRECTORY)

# Matches Go's json.Marshal output
JSON_SEPARATORS = (",", ":")


def config_reference(config_digest: str) -> str:
    return f"{config_digest}.json"


def layer_reference(digest: str, layout: str = LAYOUT_FLAT) -> str:
    """Archive path of a layer file.

    Raises:
        ValidationError: If the layout is unknown
    """
    if layout == LAYOUT_FLAT:
        return f"{digest}.tar"
    if layout == LAYOUT_DIRECTORY:
        return f"{digest}/layer.tar"
    raise ValidationError(f"Unknown layer layout: {layout!r}")


def build_manifest_entry(
    image_ref: str,
    config_digest: str,
    layers: Sequence[LayerDescriptor],
    layout: str = LAYOUT_FLAT,
) -> ManifestEntry:
    """Build the manifest entry for one image.

    ``layers`` must be the image's full layer list, including layers that
    were not downloaded. A digest-only reference gets no RepoTags.

    Args:
        image_ref: Image reference, e.g. ``repo/name:v1``
        config_digest: Config blob digest
        layers: Full ordered layer list
        layout: ``flat`` or ``directory``

    Returns:
        Manifest entry
    """
    ordered = sorted(layers, key=lambda layer: layer.index)
    if is_digest_only(image_ref):
        logger.warning(
            "%s names no tag; the archive will load as an untagged image", image_ref
        )
        repo_tags = []
    else:
        repo_tags = [format_repo_tag(image_ref)]
    return ManifestEntry(
        config=config_reference(config_digest),
        repo_tags=repo_tags,
        layers=[layer_reference(layer.digest, layout) for layer in ordered],
    )


def build_repositories_entry(image_ref: str, config_digest: str) -> RepositoriesEntry:
    repository, tag = parse_repository_tag(image_ref)
    if is_digest_only(image_ref):
        return RepositoriesEntry(repository=repository)
    return RepositoriesEntry(repository=repository, tags={tag: config_digest})


def write_manifest_files(
    output_dir: str | Path,
    entries: Sequence[ManifestEntry],
    repositories: Sequence[RepositoriesEntry],
) -> tuple[Path, Path]:
    """Write ``manifest.json`` and ``repositories`` into ``output_dir``.

    Returns:
        Paths of the manifest and repositories files

    Raises:
        FileOperationError: If either file cannot be written
    """
    output_dir = Path(output_dir)
    manifest_path = output_dir / MANIFEST_FILE
    repositories_path = output_dir / REPOSITORIES_FILE

    manifest_data = json.dumps(
        [entry.to_dict() for entry in entries], separators=JSON_SEPARATORS
    )
    repositories_data = json.dumps(
        merge_repositories(list(repositories)), separators=JSON_SEPARATORS
    )

    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        manifest_path.write_text(manifest_data, encoding="utf-8")
        repositories_path.write_text(repositories_data, encoding="utf-8")
    except OSError as e:
        raise FileOperationError(f"Cannot write manifest files in {output_dir}: {e}") from e

    logger.debug("Wrote %s and %s", manifest_path, repositories_path)
    return manifest_path, repositories_path
