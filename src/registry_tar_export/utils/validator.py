"""Validation of assembled Docker image tar files."""

import json
import tarfile
from pathlib import Path
from typing import Any

from ..exceptions import ValidationError

REQUIRED_FILES = ["manifest.json", "repositories"]
REQUIRED_FIELDS = ["Config", "RepoTags", "Layers"]


def is_path_exists(path: Path) -> bool:
    """Check if file path exists."""
    return path.exists()


def is_valid_tarfile(path: Path) -> bool:
    """Check if file is a valid tar file."""
    return tarfile.is_tarfile(path)


def get_tar_members(tar: tarfile.TarFile) -> set[str]:
    """Extract member names from tar file."""
    return {member.name.rstrip("/") for member in tar.getmembers()}


def has_required_files(tar_members: set[str], required_files: list[str]) -> bool:
    """Check if tar contains all required files."""
    return all(required_file in tar_members for required_file in required_files)


def extract_manifest_content(tar: tarfile.TarFile) -> str | None:
    """Extract manifest.json content from tar file."""
    try:
        manifest_member = tar.extractfile("manifest.json")
        if manifest_member is None:
            return None
        return manifest_member.read().decode("utf-8")
    except (UnicodeDecodeError, KeyError):
        return None


def parse_manifest_json(manifest_content: str) -> list[dict[str, Any]] | None:
    """Parse manifest JSON content."""
    try:
        manifest_data = json.loads(manifest_content)
        if not isinstance(manifest_data, list) or len(manifest_data) == 0:
            return None
        return manifest_data
    except json.JSONDecodeError:
        return None


def has_required_fields(
    manifest_entry: dict[str, Any], required_fields: list[str]
) -> bool:
    """Check if manifest entry has all required fields."""
    return all(field in manifest_entry for field in required_fields)


def missing_layers(layers: list[str], tar_members: set[str]) -> list[str]:
    """Layer references that have no file in the archive."""
    return [layer for layer in layers if layer not in tar_members]


def validate_manifest_entry(
    manifest_entry: dict[str, Any],
    tar_members: set[str],
    allow_missing_layers: bool = False,
) -> bool:
    """Validate a single manifest entry.

    With ``allow_missing_layers`` an entry whose layer files were left out
    (deduplicated against the target host) still counts as valid.
    """
    if not isinstance(manifest_entry, dict):
        return False

    if not has_required_fields(manifest_entry, REQUIRED_FIELDS):
        return False

    if manifest_entry["Config"] not in tar_members:
        return False

    layers = manifest_entry["Layers"]
    if not isinstance(layers, list):
        return False

    return allow_missing_layers or not missing_layers(layers, tar_members)


def validate_docker_tar(tar_path: Path, allow_missing_layers: bool = False) -> bool:
    """tar 파일이 docker load 가능한 이미지 tar 파일인지 검증합니다.

    Args:
        tar_path: 검증할 tar 파일 경로 (gzip 압축 포함)
        allow_missing_layers: 중복 제거로 빠진 레이어 파일을 허용할지 여부

    Returns:
        bool: 유효한 이미지 tar 파일인 경우 True, 그렇지 않으면 False

    Raises:
        ValidationError: tar 파일이 없거나 읽을 수 없는 경우

    Examples:
        # 중복 제거된 아카이브 검증
        is_valid = validate_docker_tar(Path("output.tar"), allow_missing_layers=True)
    """
    try:
        if not is_path_exists(tar_path):
            raise ValidationError(f"Tar file does not exist: {tar_path}")

        if not is_valid_tarfile(tar_path):
            return False

        with tarfile.open(tar_path, "r") as tar:
            tar_members = get_tar_members(tar)

            if not has_required_files(tar_members, REQUIRED_FILES):
                return False

            manifest_content = extract_manifest_content(tar)
            if manifest_content is None:
                return False

            manifest_data = parse_manifest_json(manifest_content)
            if manifest_data is None:
                return False

            return all(
                validate_manifest_entry(entry, tar_members, allow_missing_layers)
                for entry in manifest_data
            )

    except (tarfile.TarError, OSError) as e:
        raise ValidationError(f"Error reading tar file: {e}") from e


def get_tar_manifest(tar_path: Path) -> list[dict[str, Any]]:
    """Return the parsed ``manifest.json`` of an archive.

    Raises:
        ValidationError: If the archive or its manifest cannot be read
    """
    try:
        with tarfile.open(tar_path, "r") as tar:
            manifest_content = extract_manifest_content(tar)
            if manifest_content is None:
                raise ValidationError(f"manifest.json not found in {tar_path}")
            manifest_data = parse_manifest_json(manifest_content)
            if manifest_data is None:
                raise ValidationError(f"Invalid manifest.json in {tar_path}")
            return manifest_data
    except (tarfile.TarError, OSError) as e:
        raise ValidationError(f"Error reading manifest: {e}") from e
