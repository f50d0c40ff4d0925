"""Layer deduplication planning."""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace

from ..core.types import LayerDescriptor
from ..exceptions import ValidationError
from ..utils.digest import normalize_digest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LayerPlan:
    """Full ordered layer list plus the subset that must be downloaded.

    ``full`` feeds the manifest; ``to_fetch`` feeds the downloader.
    """

    full: tuple[LayerDescriptor, ...]
    to_fetch: tuple[LayerDescriptor, ...]

    @property
    def skipped(self) -> tuple[LayerDescriptor, ...]:
        fetch_digests = {layer.digest for layer in self.to_fetch}
        return tuple(layer for layer in self.full if layer.digest not in fetch_digests)

    @property
    def fetch_bytes(self) -> int:
        return sum(layer.size for layer in self.to_fetch)

    @property
    def skipped_bytes(self) -> int:
        return sum(layer.size for layer in self.skipped)

    def with_uncompressed_sizes(self, sizes: dict[str, int]) -> "LayerPlan":
        """Copy of the plan with ``uncompressed_size`` filled in by digest."""

        def update(layer: LayerDescriptor) -> LayerDescriptor:
            if layer.digest not in sizes:
                return layer
            return replace(layer, uncompressed_size=sizes[layer.digest])

        return LayerPlan(
            full=tuple(update(layer) for layer in self.full),
            to_fetch=tuple(update(layer) for layer in self.to_fetch),
        )


def normalize_known_digests(known_digests: Iterable[str]) -> set[str]:
    """Normalize host-known digests to ``sha256:<hex>``, dropping junk."""
    normalized = set()
    for value in known_digests:
        digest = normalize_digest(value)
        if digest:
            normalized.add(digest)
    return normalized


def plan_layers(
    layers: Sequence[LayerDescriptor],
    known_digests: Iterable[str] = (),
    declared_count: int | None = None,
) -> LayerPlan:
    """Split an image's layers into the full list and the layers to fetch.

    Args:
        layers: Image layers in image order
        known_digests: Digests already present on the target host, with or
            without the ``sha256:`` prefix
        declared_count: Layer count declared by the image config, when known

    Returns:
        Layer plan; ``full`` is ``layers`` unchanged

    Raises:
        ValidationError: If ``layers`` disagrees with ``declared_count``
    """
    full = tuple(layers)
    if declared_count is not None and len(full) != declared_count:
        raise ValidationError(
            f"Image has {len(full)} layer(s) but its config declares {declared_count}"
        )

    known = normalize_known_digests(known_digests)
    to_fetch = tuple(layer for layer in full if layer.digest not in known)

    plan = LayerPlan(full=full, to_fetch=to_fetch)
    logger.info(
        "Image has %d layer(s), %d to download (%d bytes), %d already on host",
        len(full),
        len(to_fetch),
        plan.fetch_bytes,
        len(full) - len(to_fetch),
    )
    return plan
