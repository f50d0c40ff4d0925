"""Core data types for registry tar export."""

from dataclasses import dataclass
from pathlib import Path

from ..exceptions import ValidationError

DEFAULT_REGISTRY = "registry-1.docker.io"
DOCKER_HUB_ALIASES = ("docker.io", "index.docker.io", DEFAULT_REGISTRY)

DOCKER_LAYER_MEDIA_TYPE = "application/vnd.docker.image.rootfs.diff.tar.gzip"


@dataclass(frozen=True)
class RegistryConfig:
    """Connection settings for a single registry."""

    url: str
    timeout: int = 300
    username: str | None = None
    password: str | None = None

    @property
    def base_url(self) -> str:
        """Registry URL without a trailing slash."""
        return self.url.rstrip("/")

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)


@dataclass(frozen=True)
class ImageReference:
    """Parsed ``registry/repo[:tag][@digest]`` image reference."""

    registry: str
    repository: str
    tag: str | None = None
    digest: str | None = None
    original: str = ""

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """Parse an image reference string.

        References without a registry host resolve to Docker Hub, where
        single-component names live under ``library/``.

        Raises:
            ValidationError: If the reference is empty or malformed
        """
        text = reference.strip()
        if not text:
            raise ValidationError("Image reference must not be empty")

        digest = None
        if "@" in text:
            text, digest = text.split("@", 1)
            if not digest:
                raise ValidationError(f"Invalid image reference: {reference}")

        name, tag = text, None
        colon = name.rfind(":")
        if colon > name.rfind("/"):
            name, tag = name[:colon], name[colon + 1 :] or None

        if not name:
            raise ValidationError(f"Invalid image reference: {reference}")

        first, _, rest = name.partition("/")
        if rest and ("." in first or ":" in first or first == "localhost"):
            registry, repository = first, rest
        else:
            registry, repository = DEFAULT_REGISTRY, name

        if registry in DOCKER_HUB_ALIASES:
            registry = DEFAULT_REGISTRY
            if "/" not in repository:
                repository = f"library/{repository}"

        if tag is None and digest is None:
            tag = "latest"

        return cls(
            registry=registry,
            repository=repository,
            tag=tag,
            digest=digest,
            original=reference.strip(),
        )

    @property
    def manifest_reference(self) -> str:
        """Tag or digest used to fetch the manifest (digest wins)."""
        return self.digest or self.tag or "latest"

    def registry_url(self, insecure: bool = False) -> str:
        scheme = "http" if insecure else "https"
        return f"{scheme}://{self.registry}"


@dataclass(frozen=True)
class BearerToken:
    """Registry bearer token and the scope it was issued for.

    An empty token means the registry issued no challenge.
    """

    token: str = ""
    scope: str = ""

    def __bool__(self) -> bool:
        return bool(self.token)

    def auth_headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}


@dataclass(frozen=True)
class LayerDescriptor:
    """One image layer, in image order."""

    digest: str
    size: int
    index: int
    media_type: str = DOCKER_LAYER_MEDIA_TYPE
    uncompressed_size: int | None = None
    diff_id: str | None = None


@dataclass(frozen=True)
class ImageHandle:
    """Resolved single-platform image."""

    reference: ImageReference
    config_digest: str
    config_size: int
    layers: tuple[LayerDescriptor, ...]
    media_type: str = ""
    manifest_digest: str | None = None


@dataclass
class DownloadState:
    """Download progress derived from the destination file on disk."""

    path: Path
    expected_size: int
    expected_digest: str
    bytes_on_disk: int = 0

    @classmethod
    def from_path(
        cls, path: Path, expected_size: int, expected_digest: str
    ) -> "DownloadState":
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            size = 0
        return cls(
            path=path,
            expected_size=expected_size,
            expected_digest=expected_digest,
            bytes_on_disk=size,
        )

    @property
    def is_overlong(self) -> bool:
        return self.bytes_on_disk > self.expected_size

    @property
    def is_complete(self) -> bool:
        return self.bytes_on_disk == self.expected_size

    @property
    def remaining(self) -> int:
        return max(self.expected_size - self.bytes_on_disk, 0)
