"""Images: a manifest image (config + layers) or an index image (per-platform manifests)

Images never hold their content themselves, they read it from a `ContentSource`:
the in-memory layers of a freshly built image, the local blob store or a remote
registry. Both image kinds are also layers: their content is the serialized
manifest or index.
"""
import logging
from functools import cached_property
from typing import BinaryIO, Iterable, Protocol, Union

from ociboot.errors import NotFoundError, UnsupportedMediaTypeError
from ociboot.oci.config import EmptyConfig
from ociboot.oci.descriptor import (
    MEDIA_TYPE_IMAGE_INDEX,
    MEDIA_TYPE_IMAGE_MANIFEST,
    Descriptor,
    Platform,
)
from ociboot.oci.index import Index
from ociboot.oci.layer import Layer
from ociboot.oci.manifest import Manifest

logger = logging.getLogger(__name__)

MANIFEST_MEDIA_TYPES = frozenset(
    {
        MEDIA_TYPE_IMAGE_MANIFEST,
        "application/vnd.docker.distribution.manifest.v2+json",
    }
)
INDEX_MEDIA_TYPES = frozenset(
    {
        MEDIA_TYPE_IMAGE_INDEX,
        "application/vnd.docker.distribution.manifest.list.v2+json",
    }
)


class ContentSource(Protocol):
    """Provides the content of a descriptor"""

    def open(self, descriptor: Descriptor) -> BinaryIO: ...


class MemorySource:
    """Content source over a set of in-memory layers, keyed by digest"""

    def __init__(self, layers: Iterable[Layer] = ()):
        self._layers = {layer.descriptor.digest: layer for layer in layers}

    def open(self, descriptor: Descriptor) -> BinaryIO:
        try:
            layer = self._layers[descriptor.digest]
        except KeyError:
            raise NotFoundError(f"Content {descriptor.digest} not found") from None
        return layer.content()


class SourceLayer:
    """Layer whose content is read from a content source"""

    def __init__(self, descriptor: Descriptor, source: ContentSource):
        self.descriptor = descriptor
        self.source = source

    def content(self) -> BinaryIO:
        return self.source.open(self.descriptor)

    def __repr__(self):
        return f"SourceLayer({self.descriptor.digest})"


class ManifestImage(SourceLayer):
    """Single platform image: a config and an ordered list of layers"""

    @cached_property
    def _manifest(self) -> Manifest:
        with self.content() as f:
            return Manifest.load(f.read())

    def manifest(self) -> Manifest:
        return self._manifest.model_copy(deep=True)

    def config(self) -> SourceLayer:
        return SourceLayer(self._manifest.config, self.source)

    def layers(self) -> list[SourceLayer]:
        return [SourceLayer(d, self.source) for d in self._manifest.layers]

    def __repr__(self):
        return f"ManifestImage({self.descriptor.digest})"


class IndexImage(SourceLayer):
    """Multi-platform image: an index of per-platform manifests"""

    @cached_property
    def _index(self) -> Index:
        with self.content() as f:
            return Index.load(f.read())

    def index(self) -> Index:
        return self._index.model_copy(deep=True)

    def manifests(self) -> list[Descriptor]:
        return list(self._index.manifests)

    def image(self, descriptor: Descriptor) -> "Image":
        """Open one of the images listed in this index"""
        if all(d.digest != descriptor.digest for d in self._index.manifests):
            raise NotFoundError(
                f"{descriptor.digest} is not part of index {self.descriptor.digest}"
            )
        return open_image(descriptor, self.source)

    def platform_image(self, platform: Platform) -> "Image":
        """Open the image for `platform`, matched on architecture, os and variant"""
        for descriptor in self._index.manifests:
            candidate = descriptor.platform
            if candidate is None:
                continue
            if (candidate.architecture, candidate.os) != (
                platform.architecture,
                platform.os,
            ):
                continue
            if platform.variant and candidate.variant != platform.variant:
                continue
            return open_image(descriptor, self.source)
        raise NotFoundError(
            f"No image for platform {platform} in index {self.descriptor.digest}"
        )

    def __repr__(self):
        return f"IndexImage({self.descriptor.digest})"


Image = Union[ManifestImage, IndexImage]


def open_image(descriptor: Descriptor, source: ContentSource) -> Image:
    """Wrap `descriptor` as the image kind its media type denotes"""
    if descriptor.mediaType in MANIFEST_MEDIA_TYPES:
        return ManifestImage(descriptor, source)
    if descriptor.mediaType in INDEX_MEDIA_TYPES:
        return IndexImage(descriptor, source)
    raise UnsupportedMediaTypeError(
        f"Unsupported media type {descriptor.mediaType!r} for {descriptor.digest}"
    )


def as_write_layers(image: Image) -> list[Layer]:
    """Spread an image into the layers that have to be written to store it

    For a manifest image this is the config, then the layers, then the manifest.
    For an index image, the (empty) config, then the write layers of every
    image it lists, then the index itself.
    """
    if isinstance(image, ManifestImage):
        return [image.config(), *image.layers(), image]
    layers: list[Layer] = [EmptyConfig()]
    for descriptor in image.manifests():
        layers.extend(as_write_layers(image.image(descriptor)))
    layers.append(image)
    return layers


class Source(Protocol):
    def resolve(self, ref: str) -> Image: ...


class Sink(Protocol):
    def push(self, ref: str, image: Image) -> None: ...


def copy_image(dst: Sink, src: Source, ref: str) -> Image:
    """Resolve `ref` on `src` and push the result to `dst` under the same ref"""
    image = src.resolve(ref)
    logger.info("Copying %s (%s)", ref, image.descriptor.digest)
    dst.push(ref, image)
    return image


def with_descriptor(image: Image, descriptor: Descriptor) -> Image:
    """The same image content addressed through a different descriptor

    Only annotations and platform may differ, the content has to stay the same.
    """
    if (descriptor.digest, descriptor.mediaType) != (
        image.descriptor.digest,
        image.descriptor.mediaType,
    ):
        raise ValueError(
            f"Descriptor {descriptor.digest} does not address image "
            f"{image.descriptor.digest}"
        )
    return type(image)(descriptor, image.source)
