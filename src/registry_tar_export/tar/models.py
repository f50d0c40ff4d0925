"""Record types for the legacy Docker tar image format."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ManifestEntry:
    """One ``manifest.json`` entry.

    ``layers`` always has one reference per image layer, whether or not the
    layer file ends up in the archive.
    """

    config: str
    repo_tags: list[str]
    layers: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "Config": self.config,
            "RepoTags": list(self.repo_tags),
            "Layers": list(self.layers),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ManifestEntry":
        """Build an entry from parsed JSON.

        Raises:
            KeyError: If Config or Layers is missing
            TypeError: If a field has the wrong type
        """
        layers = data["Layers"]
        repo_tags = data.get("RepoTags") or []
        if not isinstance(data["Config"], str):
            raise TypeError("Config must be a string")
        if not isinstance(layers, list) or not isinstance(repo_tags, list):
            raise TypeError("Layers and RepoTags must be lists")
        return cls(config=data["Config"], repo_tags=repo_tags, layers=layers)


@dataclass
class RepositoriesEntry:
    """Repository name to ``{tag: config digest}`` mapping for one image."""

    repository: str
    tags: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {self.repository: dict(self.tags)}


def merge_repositories(entries: list[RepositoriesEntry]) -> dict[str, dict[str, str]]:
    """Merge entries into the single object stored in ``repositories``.

    Entries without tags are left out.
    """
    merged: dict[str, dict[str, str]] = {}
    for entry in entries:
        if entry.tags:
            merged.setdefault(entry.repository, {}).update(entry.tags)
    return merged
