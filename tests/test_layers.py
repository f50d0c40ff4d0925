"""Tests for expanding layer blobs into uncompressed layer files."""

import gzip

import pytest

from registry_tar_export.core.types import LayerDescriptor
from registry_tar_export.exceptions import ChecksumError, FileOperationError
from registry_tar_export.operations.layers import (
    compressed_reference,
    expand_blob,
    expand_layer,
    expand_layers,
)
from registry_tar_export.utils.digest import calculate_digest

PAYLOAD = b"layer tar payload" * 100


def make_layer(content=PAYLOAD, index=0, diff_id="auto"):
    blob = gzip.compress(content)
    return blob, LayerDescriptor(
        digest=calculate_digest(blob),
        size=len(blob),
        index=index,
        diff_id=calculate_digest(content) if diff_id == "auto" else diff_id,
    )


def test_compressed_reference():
    """Test blob paths sit next to the layer file."""
    digest = "sha256:" + "a" * 64
    assert compressed_reference(digest) == f"{digest}.tar.gz"
    assert compressed_reference(digest, "directory") == f"{digest}/layer.tar.gz"


def test_expand_gzip_blob(tmp_path):
    """Test gzip blobs are decompressed and sized."""
    blob, layer = make_layer()
    source = tmp_path / "blob.gz"
    source.write_bytes(blob)
    dest = tmp_path / "layer.tar"

    size = expand_blob(source, dest, layer.diff_id)

    assert size == len(PAYLOAD)
    assert dest.read_bytes() == PAYLOAD
    assert not (tmp_path / "layer.tar.part").exists()


def test_expand_plain_blob(tmp_path):
    """Test blobs that are not gzip are copied unchanged."""
    source = tmp_path / "blob"
    source.write_bytes(PAYLOAD)
    dest = tmp_path / "layer.tar"

    assert expand_blob(source, dest, calculate_digest(PAYLOAD)) == len(PAYLOAD)
    assert dest.read_bytes() == PAYLOAD


def test_expand_blob_diff_id_mismatch(tmp_path):
    """Test mismatching content never reaches the destination."""
    blob, _ = make_layer()
    source = tmp_path / "blob.gz"
    source.write_bytes(blob)
    dest = tmp_path / "layer.tar"

    with pytest.raises(ChecksumError) as exc_info:
        expand_blob(source, dest, calculate_digest(b"other"))

    assert exc_info.value.kind == "CHECKSUM_ERROR"
    assert not dest.exists()
    assert not (tmp_path / "layer.tar.part").exists()


def test_expand_truncated_gzip(tmp_path):
    """Test a truncated gzip stream fails as a file operation."""
    blob, _ = make_layer()
    source = tmp_path / "blob.gz"
    source.write_bytes(blob[: len(blob) // 2])
    dest = tmp_path / "layer.tar"

    with pytest.raises(FileOperationError):
        expand_blob(source, dest)

    assert not dest.exists()


@pytest.mark.asyncio
async def test_expand_layer_reuses_verified_file(tmp_path):
    """Test an existing expanded file is kept when it matches the diff_id."""
    _, layer = make_layer()
    dest = tmp_path / "layer.tar"
    dest.write_bytes(PAYLOAD)

    size = await expand_layer(tmp_path / "missing.gz", dest, layer)

    assert size == len(PAYLOAD)


@pytest.mark.asyncio
async def test_expand_layer_without_diff_id(tmp_path, caplog):
    """Test layers without a diff_id are expanded with a warning."""
    blob, layer = make_layer(diff_id=None)
    source = tmp_path / "blob.gz"
    source.write_bytes(blob)

    size = await expand_layer(source, tmp_path / "layer.tar", layer)

    assert size == len(PAYLOAD)
    assert "not verified" in caplog.text


@pytest.mark.asyncio
async def test_expand_layers(tmp_path):
    """Test every downloaded blob in the work directory is expanded once."""
    first_blob, first = make_layer(b"first" * 10, 0)
    second_blob, second = make_layer(b"second" * 10, 1)
    for blob, layer in ((first_blob, first), (second_blob, second)):
        (tmp_path / compressed_reference(layer.digest)).write_bytes(blob)

    sizes = await expand_layers([first, second, first], tmp_path)

    assert sizes == {first.digest: 50, second.digest: 60}
    assert (tmp_path / f"{first.digest}.tar").read_bytes() == b"first" * 10
