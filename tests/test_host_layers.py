"""Tests for loading layer digests known to the target host."""

import pytest

from registry_tar_export.exceptions import FileOperationError
from registry_tar_export.utils.host_layers import load_known_digests, parse_known_digests

HEX_A = "a" * 64
HEX_B = "b" * 64


def test_parse_known_digests():
    """Test bare hex and prefixed digests, skipping comments and junk."""
    lines = [
        "# docker root: /var/lib/docker",
        HEX_A,
        "",
        f"  sha256:{HEX_B}  ",
        "not-a-digest",
    ]

    assert parse_known_digests(lines) == {f"sha256:{HEX_A}", f"sha256:{HEX_B}"}


def test_load_known_digests(tmp_path):
    """Test reading digests from a file."""
    path = tmp_path / "host-layers.txt"
    path.write_text(f"{HEX_A}\n{HEX_A}\nsha256:{HEX_B}\n")

    assert load_known_digests(path) == {f"sha256:{HEX_A}", f"sha256:{HEX_B}"}


def test_load_known_digests_missing_file(tmp_path):
    """Test a missing file raises FileOperationError."""
    with pytest.raises(FileOperationError) as exc_info:
        load_known_digests(tmp_path / "missing.txt")

    assert exc_info.value.kind == "FILE_OPERATION_FAILED"
