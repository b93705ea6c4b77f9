import hashlib
import re
from pathlib import Path

import httpx
import pytest

import ociboot
from ociboot.oci import ImageBuilder, MemoryIndexStorage, Store
from ociboot.oci.descriptor import Descriptor, digest_from_bytes


@pytest.fixture
def store_path(tmp_path) -> Path:
    return tmp_path / "store"


@pytest.fixture
def store(store_path) -> Store:
    return Store(store_path)


@pytest.fixture
def memory_store(tmp_path) -> Store:
    """Store with blobs on disk and the index in memory"""
    return Store(tmp_path / "memory-store", index_storage=MemoryIndexStorage())


@pytest.fixture
def boot_image():
    return (
        ImageBuilder.from_json({}, media_type=ociboot.CONFIG_MEDIA_TYPE)
        .bytes_layer(b"K", media_type=ociboot.KERNEL_LAYER_MEDIA_TYPE)
        .bytes_layer(b"I", media_type=ociboot.INITRAMFS_LAYER_MEDIA_TYPE)
        .bytes_layer(b"R", media_type=ociboot.ROOTFS_LAYER_MEDIA_TYPE)
        .complete()
    )


@pytest.fixture
def boot_files(tmp_path) -> dict[str, Path]:
    files = {}
    for kind, content in (("kernel", b"K"), ("initramfs", b"I"), ("rootfs", b"R")):
        path = tmp_path / kind
        path.write_bytes(content)
        files[kind] = path
    return files


def descriptor(
    data: bytes = b"data",
    media_type: str = "application/vnd.oci.image.manifest.v1+json",
    **annotations: str,
) -> Descriptor:
    return Descriptor(
        mediaType=media_type,
        digest=digest_from_bytes(data),
        size=len(data),
        annotations=annotations or None,
    )


def named(data: bytes, ref_name: str, **kwargs) -> Descriptor:
    return descriptor(
        data, **kwargs, **{"org.opencontainers.image.ref.name": ref_name}
    )


UPLOAD_RE = re.compile(r"^/v2/(?P<name>.+)/blobs/uploads/(?P<id>.*)$")
CONTENT_RE = re.compile(r"^/v2/(?P<name>.+)/(?P<kind>blobs|manifests)/(?P<ref>[^/]+)$")


class FakeRegistry:
    """In-memory registry speaking enough of the distribution API"""

    def __init__(self, token: str | None = None):
        self.token = token
        self.blobs: dict[tuple[str, str], bytes] = {}
        self.manifests: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.requests: list[httpx.Request] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/token":
            if request.headers.get("Authorization", "").startswith("Basic "):
                return httpx.Response(200, json={"token": self.token})
            return httpx.Response(401)
        if self.token is not None:
            if request.headers.get("Authorization") != f"Bearer {self.token}":
                return httpx.Response(
                    401,
                    headers={
                        "WWW-Authenticate": 'Bearer realm="https://auth.test/token",'
                        'service="registry.test"'
                    },
                )
        if path == "/v2/":
            return httpx.Response(200)

        if match := UPLOAD_RE.match(path):
            if request.method == "POST":
                return httpx.Response(
                    202, headers={"Location": f"/v2/{match['name']}/blobs/uploads/1"}
                )
            data = request.read()
            digest = request.url.params["digest"]
            assert digest == f"sha256:{hashlib.sha256(data).hexdigest()}"
            self.blobs[match["name"], digest] = data
            return httpx.Response(201)

        match = CONTENT_RE.match(path)
        if match is None:
            return httpx.Response(404)
        key = match["name"], match["ref"]
        if match["kind"] == "blobs":
            if key not in self.blobs:
                return httpx.Response(404)
            return httpx.Response(200, content=self.blobs[key])

        if request.method == "PUT":
            data = request.read()
            digest = f"sha256:{hashlib.sha256(data).hexdigest()}"
            media_type = request.headers["content-type"]
            self.manifests[key] = (data, media_type)
            self.manifests[match["name"], digest] = (data, media_type)
            return httpx.Response(201, headers={"Docker-Content-Digest": digest})
        if key not in self.manifests:
            return httpx.Response(404)
        data, media_type = self.manifests[key]
        return httpx.Response(
            200,
            content=data if request.method == "GET" else b"",
            headers={
                "Content-Type": media_type,
                "Docker-Content-Digest": f"sha256:{hashlib.sha256(data).hexdigest()}",
            },
        )


@pytest.fixture
def fake():
    return FakeRegistry()
