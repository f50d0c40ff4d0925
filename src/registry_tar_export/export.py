"""Async functional image export operations."""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import BinaryIO

from .config import ExportConfig
from .core.auth import authenticate
from .core.session import create_session
from .core.types import ImageHandle, ImageReference
from .exceptions import ExportTimeoutError, FileOperationError
from .operations.blobs import download_layers, fetch_config
from .operations.layers import COMPRESSED_SUFFIX, expand_layers
from .operations.manifests import (
    attach_diff_ids,
    declared_layer_count,
    read_image_config,
    resolve_image,
)
from .operations.plan import LayerPlan, plan_layers
from .tar.assembler import assemble_archive
from .tar.manifest import (
    build_manifest_entry,
    build_repositories_entry,
    layer_reference,
    write_manifest_files,
)
from .tar.models import ManifestEntry, RepositoriesEntry
from .utils.digest import validate_digest, verify_file_digest

logger = logging.getLogger(__name__)


@dataclass
class ExportResult:
    """Outcome of a single image export.

    ``plan.skipped`` lists the layers that were not downloaded because the
    target host has them. ``skipped_layers`` lists the manifest references
    whose files were missing from the archive. The two differ when a verified
    file of a host-known layer was already in the work directory: that file
    is archived and is not reported in ``skipped_layers``.
    """

    archive_path: Path | None
    image: ImageHandle
    plan: LayerPlan
    manifest: ManifestEntry
    repositories: RepositoriesEntry
    skipped_layers: list[str] = field(default_factory=list)


async def _discard_unverified_skipped(
    work_dir: Path, plan: LayerPlan, layout: str, uncompressed: bool
) -> None:
    """Remove local files of skipped layers that do not verify.

    The assembler packs any layer file it finds, so a file of a deduplicated
    layer survives only when its content matches the layer's digest, or its
    diff_id for uncompressed layers.
    """
    for layer in plan.skipped:
        path = work_dir / layer_reference(layer.digest, layout)
        if not path.is_file():
            continue

        expected = layer.diff_id if uncompressed else layer.digest
        try:
            valid = (
                expected is not None
                and validate_digest(expected)
                and (uncompressed or path.stat().st_size == layer.size)
                and await verify_file_digest(path, expected)
            )
            if valid:
                logger.debug("Keeping verified file %s of a skipped layer", path)
                continue
            logger.warning("Removing unverified file %s of a skipped layer", path)
            path.unlink()
        except OSError as e:
            raise FileOperationError(f"Cannot check {path}: {e}") from e


async def _export(
    image: str,
    reference: ImageReference,
    known_digests: Iterable[str],
    config: ExportConfig,
    output: str | Path | BinaryIO,
) -> ExportResult:
    registry = config.registry_config(reference)
    work_dir = Path(config.work_dir)
    policy = config.retry_policy()

    session = await create_session(config.timeout)
    async with session:
        # One token per run, acquired before any parallel fetch
        token = await authenticate(session, registry, reference.repository)
        handle = await resolve_image(session, registry, reference, token, config.platform)

        config_path = await fetch_config(session, registry, handle, work_dir, token, policy)
        image_config = read_image_config(config_path)
        handle = attach_diff_ids(handle, image_config)

        plan = plan_layers(handle.layers, known_digests, declared_layer_count(image_config))
        await _discard_unverified_skipped(
            work_dir, plan, config.layout, config.uncompressed_layers
        )

        await download_layers(
            session,
            registry,
            reference.repository,
            plan.to_fetch,
            work_dir,
            token=token,
            retry_policy=policy,
            concurrency=config.concurrency,
            layout=config.layout,
            suffix=COMPRESSED_SUFFIX if config.uncompressed_layers else "",
        )

    if config.uncompressed_layers:
        sizes = await expand_layers(plan.to_fetch, work_dir, config.layout)
        plan = plan.with_uncompressed_sizes(sizes)
        handle = replace(handle, layers=plan.full)

    manifest = build_manifest_entry(image, handle.config_digest, plan.full, config.layout)
    repositories = build_repositories_entry(image, handle.config_digest)
    write_manifest_files(work_dir, [manifest], [repositories])

    report = await assemble_archive(work_dir, output, config.compress)
    if report.skipped_layers:
        logger.warning(
            "%d layer(s) are not in the archive; load it only on a host that "
            "already has them",
            len(report.skipped_layers),
        )

    return ExportResult(
        archive_path=report.archive,
        image=handle,
        plan=plan,
        manifest=manifest,
        repositories=repositories,
        skipped_layers=report.skipped_layers,
    )


async def export_image(
    image: str,
    known_digests: Iterable[str] = (),
    config: ExportConfig | None = None,
    output: str | Path | BinaryIO | None = None,
) -> ExportResult:
    """레지스트리 이미지를 docker load 호환 tar 파일로 비동기 내보내기 합니다.

    대상 호스트에 이미 존재하는 레이어(known_digests)는 다운로드하지 않습니다.
    manifest.json에는 항상 모든 레이어가 기록되지만, 건너뛴 레이어 파일은
    아카이브에 포함되지 않으므로 해당 레이어를 가진 호스트에서만 로드할 수 있습니다.

    Args:
        image: 이미지 참조 (예: "nginx", "registry.example.com/team/app:v1")
        known_digests: 대상 호스트에 이미 존재하는 레이어 digest 목록
            - "sha256:abc..." 또는 16진수 문자열만도 허용
        config: 내보내기 설정 (기본값: ExportConfig())
        output: 출력 tar 경로 또는 바이너리 파일 객체 (기본값: config.output)

    Returns:
        ExportResult: 아카이브 경로, 레이어 계획, manifest 항목, 제외된 레이어 목록

    Raises:
        AuthenticationError: 레지스트리 인증 실패 시
        ManifestError: manifest 또는 이미지 config를 읽을 수 없는 경우
        BlobDownloadError: 재시도 후에도 blob 다운로드에 실패한 경우
        TarAssemblyError: 아카이브를 만들 수 없는 경우
        ExportTimeoutError: config.deadline 시간이 초과된 경우

    Examples:
        # 전체 이미지 내보내기
        result = await export_image("nginx:1.25")

        # 대상 호스트에 있는 레이어를 제외하고 내보내기
        known = load_known_digests("host-layers.txt")
        result = await export_image("nginx:1.25", known_digests=known)
        print(f"{len(result.plan.to_fetch)}/{len(result.plan.full)} 레이어 다운로드")
    """
    config = (config or ExportConfig()).validate()
    reference = ImageReference.parse(image)
    target = output if output is not None else config.output

    logger.info("Exporting %s to %s", image, target)
    export = _export(image, reference, known_digests, config, target)
    if config.deadline is None:
        return await export

    try:
        return await asyncio.wait_for(export, config.deadline)
    except asyncio.TimeoutError as e:
        raise ExportTimeoutError(
            f"Export of {image} did not finish within {config.deadline} seconds"
        ) from e
