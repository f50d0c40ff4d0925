"""Digest calculation and validation utilities."""

import hashlib
import re
from pathlib import Path
from typing import Union

import aiofiles

# Regex pattern for valid digest format (algorithm:hex)
DIGEST_PATTERN = re.compile(r"^[a-z0-9]+:[a-f0-9]+$")
HEX_PATTERN = re.compile(r"^[a-f0-9]{64}$")

FILE_READ_SIZE = 1024 * 1024


def calculate_digest(data: Union[bytes, bytearray], algorithm: str = "sha256") -> str:
    """Calculate digest of data.

    Args:
        data: Data to hash
        algorithm: Hash algorithm (default: sha256)

    Returns:
        Digest string in format "algorithm:hex"

    Raises:
        ValueError: If algorithm is not supported
        ValueError: If data is not bytes-like
    """
    if not isinstance(data, (bytes, bytearray)):
        raise ValueError("Data must be bytes or bytearray")

    if algorithm not in hashlib.algorithms_available:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    hasher = hashlib.new(algorithm)
    hasher.update(data)
    return f"{algorithm}:{hasher.hexdigest()}"


def validate_digest(digest: str) -> bool:
    """Validate digest format.

    Args:
        digest: Digest string to validate

    Returns:
        True if valid digest format
    """
    if not isinstance(digest, str):
        return False

    if not DIGEST_PATTERN.match(digest):
        return False

    # Check if algorithm is valid
    algorithm, _ = digest.split(":", 1)
    return algorithm in ["sha256", "sha512", "sha1", "md5"]


def normalize_digest(value: str) -> str | None:
    """Return ``sha256:<hex>`` for a digest or bare sha256 hex string.

    Returns None for anything that is neither.
    """
    value = value.strip().lower()
    if validate_digest(value):
        return value
    if HEX_PATTERN.match(value):
        return f"sha256:{value}"
    return None


async def calculate_file_digest(
    path: Union[str, Path], algorithm: str = "sha256"
) -> str:
    """Calculate digest of a file by streaming it from disk.

    Args:
        path: File to hash
        algorithm: Hash algorithm (default: sha256)

    Returns:
        Digest string in format "algorithm:hex"
    """
    if algorithm not in hashlib.algorithms_available:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    hasher = hashlib.new(algorithm)
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(FILE_READ_SIZE)
            if not chunk:
                break
            hasher.update(chunk)
    return f"{algorithm}:{hasher.hexdigest()}"


async def verify_file_digest(path: Union[str, Path], expected_digest: str) -> bool:
    """Verify a file on disk matches expected digest.

    Raises:
        ValueError: If digest format is invalid
    """
    if not validate_digest(expected_digest):
        raise ValueError(f"Invalid digest format: {expected_digest}")

    algorithm, _ = expected_digest.split(":", 1)
    return await calculate_file_digest(path, algorithm) == expected_digest
