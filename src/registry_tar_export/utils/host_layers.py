"""Loading the set of layer digests already present on the target host.

The list is produced outside this package, typically by listing
``image/overlay2/distribution/diffid-by-digest/sha256`` under the target's
Docker root directory. Each line is a bare hex digest or ``sha256:<hex>``.
"""

import logging
from collections.abc import Iterable
from pathlib import Path

from ..exceptions import FileOperationError
from .digest import normalize_digest

logger = logging.getLogger(__name__)


def parse_known_digests(lines: Iterable[str]) -> set[str]:
    """Parse digest lines, skipping blanks, ``#`` comments and junk."""
    digests = set()
    for line in lines:
        value = line.strip()
        if not value or value.startswith("#"):
            continue
        digest = normalize_digest(value)
        if digest is None:
            logger.debug("Ignoring non-digest line %r", value)
            continue
        digests.add(digest)
    return digests


def load_known_digests(path: str | Path) -> set[str]:
    """Read host-known digests from a text file.

    Raises:
        FileOperationError: If the file cannot be read
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise FileOperationError(f"Cannot read known digests from {path}: {e}") from e

    digests = parse_known_digests(text.splitlines())
    logger.info("Loaded %d known layer digest(s) from %s", len(digests), path)
    return digests
