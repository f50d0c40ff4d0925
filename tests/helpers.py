"""In-process fake registry and image builders for tests."""

import asyncio
import json
import re
from dataclasses import dataclass, field

from aiohttp import web

from registry_tar_export.core.types import LayerDescriptor
from registry_tar_export.operations.manifests import DOCKER_MANIFEST_V2, OCI_INDEX
from registry_tar_export.utils import calculate_digest

RANGE_PATTERN = re.compile(r"^bytes=(\d+)-$")

TOKEN = "test-token"
SERVICE = "fake-registry"


@dataclass
class RecordedRequest:
    path: str
    headers: dict[str, str]
    query: dict[str, str] = field(default_factory=dict)


class FakeRegistry:
    """Minimal registry v2 server with knobs for failure scenarios."""

    def __init__(self):
        self.url = ""
        self.host = ""
        self.blobs: dict[str, bytes] = {}
        self.manifests: dict[tuple[str, str], tuple[bytes, str, str]] = {}
        self.requests: list[RecordedRequest] = []

        self.require_auth = False
        self.challenge: str | None = None
        self.probe_status: int | None = None
        self.token_status = 200
        self.token_body: dict | None = None

        self.support_ranges = True
        self.fail_counts: dict[str, int] = {}
        self.short_responses: dict[str, int] = {}
        self.corrupt: set[str] = set()
        self.blob_delay = 0.0

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/v2/", self.handle_probe)
        app.router.add_get("/token", self.handle_token)
        app.router.add_get("/v2/{name:.+}/manifests/{reference}", self.handle_manifest)
        app.router.add_get("/v2/{name:.+}/blobs/{digest}", self.handle_blob)
        return app

    def blob_requests(self, digest: str | None = None) -> list[RecordedRequest]:
        return [
            r
            for r in self.requests
            if "/blobs/" in r.path and (digest is None or r.path.endswith(digest))
        ]

    def _record(self, request: web.Request) -> None:
        self.requests.append(
            RecordedRequest(
                path=request.path,
                headers=dict(request.headers),
                query=dict(request.query),
            )
        )

    def _challenge(self, request: web.Request) -> str:
        if self.challenge is not None:
            return self.challenge
        origin = str(request.url.origin())
        return f'Bearer realm="{origin}/token",service="{SERVICE}"'

    def _unauthorized(self, request: web.Request) -> web.Response | None:
        if not self.require_auth:
            return None
        if request.headers.get("Authorization") == f"Bearer {TOKEN}":
            return None
        return web.Response(
            status=401, headers={"WWW-Authenticate": self._challenge(request)}
        )

    async def handle_probe(self, request: web.Request) -> web.Response:
        self._record(request)
        if self.probe_status is not None:
            return web.Response(status=self.probe_status)
        return self._unauthorized(request) or web.json_response({})

    async def handle_token(self, request: web.Request) -> web.Response:
        self._record(request)
        if self.token_status != 200:
            return web.Response(status=self.token_status)
        body = self.token_body if self.token_body is not None else {"token": TOKEN}
        return web.json_response(body)

    async def handle_manifest(self, request: web.Request) -> web.Response:
        self._record(request)
        denied = self._unauthorized(request)
        if denied:
            return denied

        key = (request.match_info["name"], request.match_info["reference"])
        if key not in self.manifests:
            return web.json_response({"errors": [{"code": "MANIFEST_UNKNOWN"}]}, status=404)

        body, media_type, digest = self.manifests[key]
        return web.Response(
            body=body,
            headers={"Content-Type": media_type, "Docker-Content-Digest": digest},
        )

    async def handle_blob(self, request: web.Request) -> web.Response:
        self._record(request)
        denied = self._unauthorized(request)
        if denied:
            return denied

        digest = request.match_info["digest"]
        if digest not in self.blobs:
            return web.Response(status=404)

        if self.blob_delay:
            await asyncio.sleep(self.blob_delay)

        if self.fail_counts.get(digest, 0) > 0:
            self.fail_counts[digest] -= 1
            return web.Response(status=500)

        data = self.blobs[digest]
        if digest in self.corrupt:
            data = bytes(b ^ 0xFF for b in data)

        start = 0
        match = RANGE_PATTERN.match(request.headers.get("Range", ""))
        if self.support_ranges and match:
            start = int(match.group(1))
            if start >= len(data):
                return web.Response(status=416)

        end = len(data)
        if self.short_responses.get(digest):
            end = max(self.short_responses.pop(digest), start)

        if start:
            return web.Response(
                status=206,
                body=data[start:end],
                headers={"Content-Range": f"bytes {start}-{len(data) - 1}/{len(data)}"},
            )
        return web.Response(body=data[:end])

    def add_blob(self, data: bytes) -> str:
        digest = calculate_digest(data)
        self.blobs[digest] = data
        return digest

    def add_manifest(
        self, repository: str, reference: str, manifest: dict, media_type: str
    ) -> str:
        body = json.dumps(manifest).encode("utf-8")
        digest = calculate_digest(body)
        self.manifests[(repository, reference)] = (body, media_type, digest)
        self.manifests[(repository, digest)] = (body, media_type, digest)
        return digest


@dataclass
class FakeImage:
    repository: str
    tag: str
    config_digest: str
    layer_digests: list[str]
    manifest_digest: str


def add_image(
    registry: FakeRegistry,
    repository: str,
    tag: str,
    layer_contents: list[bytes],
    architecture: str = "amd64",
    diff_id_count: int | None = None,
    diff_ids: list[str] | None = None,
) -> FakeImage:
    """Publish a single-platform image with the given layer payloads."""
    layer_digests = [registry.add_blob(content) for content in layer_contents]
    count = len(layer_contents) if diff_id_count is None else diff_id_count
    if diff_ids is None:
        diff_ids = [calculate_digest(b"diff-%d" % i) for i in range(count)]
    image_config = {
        "architecture": architecture,
        "os": "linux",
        "rootfs": {
            "type": "layers",
            "diff_ids": diff_ids,
        },
    }
    config_data = json.dumps(image_config).encode("utf-8")
    config_digest = registry.add_blob(config_data)

    manifest = {
        "schemaVersion": 2,
        "mediaType": DOCKER_MANIFEST_V2,
        "config": {
            "mediaType": "application/vnd.docker.container.image.v1+json",
            "size": len(config_data),
            "digest": config_digest,
        },
        "layers": [
            {
                "mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip",
                "size": len(content),
                "digest": digest,
            }
            for content, digest in zip(layer_contents, layer_digests)
        ],
    }
    manifest_digest = registry.add_manifest(repository, tag, manifest, DOCKER_MANIFEST_V2)
    return FakeImage(repository, tag, config_digest, layer_digests, manifest_digest)


def add_index(
    registry: FakeRegistry, repository: str, tag: str, platforms: dict[str, FakeImage]
) -> str:
    """Publish an OCI index over already added per-platform manifests."""
    entries = []
    for platform, image in platforms.items():
        parts = platform.split("/")
        descriptor_platform = {"os": parts[0], "architecture": parts[1]}
        if len(parts) == 3:
            descriptor_platform["variant"] = parts[2]
        body = registry.manifests[(repository, image.manifest_digest)][0]
        entries.append(
            {
                "mediaType": DOCKER_MANIFEST_V2,
                "digest": image.manifest_digest,
                "size": len(body),
                "platform": descriptor_platform,
            }
        )
    index = {"schemaVersion": 2, "mediaType": OCI_INDEX, "manifests": entries}
    return registry.add_manifest(repository, tag, index, OCI_INDEX)


def make_layers(count: int, size: int = 64) -> list[LayerDescriptor]:
    """Descriptors with distinct, valid digests."""
    return [
        LayerDescriptor(
            digest=calculate_digest(b"layer-%d" % i), size=size * (i + 1), index=i
        )
        for i in range(count)
    ]
