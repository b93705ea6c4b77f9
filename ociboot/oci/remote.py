"""Registry access: resolve images from and push images to an OCI registry"""
import io
import logging
from typing import BinaryIO

import httpx

from ociboot.errors import (
    InvalidReferenceError,
    NotFoundError,
    UnsupportedMediaTypeError,
)
from ociboot.oci.client import MANIFEST_ACCEPT, Client
from ociboot.oci.credentials import DockerCredentials
from ociboot.oci.descriptor import Descriptor
from ociboot.oci.image import (
    INDEX_MEDIA_TYPES,
    MANIFEST_MEDIA_TYPES,
    Image,
    IndexImage,
    ManifestImage,
    as_write_layers,
    open_image,
)
from ociboot.oci.layer import read_layer
from ociboot.oci.reference import Reference, parse_named

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN = "docker.io"
DEFAULT_TAG = "latest"


def _split(ref: str) -> tuple[str, str, Reference]:
    parsed = parse_named(ref)
    domain = parsed.domain or DEFAULT_DOMAIN
    path = parsed.path
    if parsed.domain is None and "/" not in path:
        path = f"library/{path}"
    return domain, path, parsed


class RegistryFetcher:
    """Content source reading manifests and blobs of one repository"""

    def __init__(self, client: Client, name: str):
        self.client = client
        self.name = name

    def open(self, descriptor: Descriptor) -> BinaryIO:
        if descriptor.mediaType in MANIFEST_MEDIA_TYPES | INDEX_MEDIA_TYPES:
            data = self.client.pull_manifest(self.name, descriptor.digest)
        else:
            data = self.client.pull_blob(self.name, descriptor.digest)
        return io.BytesIO(data)


class RegistryPusher:
    """Pushes the content of an image to one repository"""

    def __init__(self, client: Client, name: str):
        self.client = client
        self.name = name

    def push(self, reference: str, image: Image):
        for layer in as_write_layers(image):
            if layer is image:
                continue
            data = read_layer(layer)
            if isinstance(layer, (ManifestImage, IndexImage)):
                self.client.push_manifest(
                    self.name, layer.descriptor.digest, data, layer.descriptor.mediaType
                )
            else:
                self.client.push_blob(self.name, data, layer.descriptor.digest)
        self.client.push_manifest(
            self.name, reference, read_layer(image), image.descriptor.mediaType
        )
        logger.info("Pushed %s:%s (%s)", self.name, reference, image.descriptor.digest)


class Registry:
    """Remote image source and sink

    Clients are kept open per registry domain until `close`, images resolved
    from the registry read their content lazily. Explicit credentials take
    precedence over the ones found in `credentials`.
    """

    def __init__(
        self,
        username: str | None = None,
        password: str | None = None,
        insecure: bool = False,
        transport: httpx.BaseTransport | None = None,
        credentials: DockerCredentials | None = None,
    ):
        self.username = username
        self.password = password
        self.insecure = insecure
        self.credentials = credentials
        self._transport = transport
        self._clients: dict[str, Client] = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        for client in self._clients.values():
            client.close()
        self._clients.clear()

    def client(self, domain: str) -> Client:
        if domain not in self._clients:
            username, password = self.username, self.password
            if password is None and self.credentials is not None:
                found = self.credentials.lookup(domain)
                if found is not None:
                    username, password = found
            self._clients[domain] = Client(
                domain,
                username=username,
                password=password,
                insecure=self.insecure,
                transport=self._transport,
            )
        return self._clients[domain]

    def resolve(self, ref: str) -> Image:
        domain, path, parsed = _split(ref)
        client = self.client(domain)
        reference = parsed.digest or parsed.tag or DEFAULT_TAG
        descriptor = client.resolve_manifest(path, reference)
        logger.info("Resolved %s to %s", ref, descriptor.digest)
        return open_image(descriptor, RegistryFetcher(client, path))

    def push(self, ref: str, image: Image):
        domain, path, parsed = _split(ref)
        if parsed.digest is not None:
            raise InvalidReferenceError(f"Cannot push to digest reference {ref}")
        pusher = RegistryPusher(self.client(domain), path)
        pusher.push(parsed.tag or DEFAULT_TAG, image)

    def url(self, ref: str, media_type: str | None = None) -> dict:
        """Request information for the manifest of `ref`

        With `media_type`, for the first layer of that media type instead.
        """
        domain, path, parsed = _split(ref)
        client = self.client(domain)
        if media_type is None:
            reference = parsed.digest or parsed.tag or DEFAULT_TAG
            return client.request_info(
                f"/v2/{path}/manifests/{reference}",
                headers={"Accept": MANIFEST_ACCEPT},
            )

        image = self.resolve(ref)
        if not isinstance(image, ManifestImage):
            raise UnsupportedMediaTypeError(
                f"{ref} is not a manifest image: {image.descriptor.mediaType!r}"
            )
        for layer in image.layers():
            if layer.descriptor.mediaType == media_type:
                return client.request_info(f"/v2/{path}/blobs/{layer.descriptor.digest}")
        raise NotFoundError(f"No layer with media type {media_type} in {ref}")
