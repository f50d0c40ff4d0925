"""Utility functions for registry tar export."""

from .digest import calculate_digest, calculate_file_digest, validate_digest

__all__ = ["calculate_digest", "calculate_file_digest", "validate_digest"]
