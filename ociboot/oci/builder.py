"""Builders assembling images from in-memory or file layers

Builders are fail-fast: the first error is kept, every following call becomes a
no-op and `complete()` raises the error.
"""
import logging
from pathlib import Path
from typing import Any, Mapping

from ociboot.errors import OCIBootError, UnsupportedMediaTypeError
from ociboot.oci.descriptor import (
    MEDIA_TYPE_IMAGE_INDEX,
    MEDIA_TYPE_IMAGE_MANIFEST,
    Descriptor,
    Platform,
    digest_from_bytes,
)
from ociboot.oci.image import (
    IndexImage,
    ManifestImage,
    MemorySource,
    as_write_layers,
)
from ociboot.oci.index import Index
from ociboot.oci.layer import BytesLayer, FileLayer, Layer, json_layer
from ociboot.oci.manifest import Manifest

logger = logging.getLogger(__name__)


def _image_descriptor(
    data: bytes, media_type: str, annotations: Mapping[str, str] | None
) -> Descriptor:
    return Descriptor(
        mediaType=media_type,
        digest=digest_from_bytes(data),
        size=len(data),
        annotations=dict(annotations) if annotations else None,
    )


class ImageBuilder:
    """Builds a manifest image from a config layer and an ordered list of layers

    Usage:
        image = (
            ImageBuilder.from_json({}, media_type=CONFIG_MEDIA_TYPE)
            .file_layer(kernel_path, media_type=KERNEL_LAYER_MEDIA_TYPE)
            .complete()
        )
    """

    def __init__(self, config: Layer | None = None, error: Exception | None = None):
        if config is None and error is None:
            raise ValueError("ImageBuilder needs a config layer")
        self._config = config
        self._layers: list[Layer] = []
        self._error = error

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        media_type: str,
        annotations: Mapping[str, str] | None = None,
    ) -> "ImageBuilder":
        return cls(BytesLayer(data, media_type=media_type, annotations=annotations))

    @classmethod
    def from_json(
        cls,
        value: Any,
        media_type: str,
        annotations: Mapping[str, str] | None = None,
    ) -> "ImageBuilder":
        try:
            config = json_layer(value, media_type=media_type, annotations=annotations)
        except OCIBootError as e:
            return cls(error=e)
        return cls(config)

    def bytes_layer(
        self,
        data: bytes,
        media_type: str,
        annotations: Mapping[str, str] | None = None,
    ) -> "ImageBuilder":
        if self._error is None:
            self._layers.append(
                BytesLayer(data, media_type=media_type, annotations=annotations)
            )
        return self

    def file_layer(
        self,
        path: Path,
        media_type: str,
        annotations: Mapping[str, str] | None = None,
    ) -> "ImageBuilder":
        if self._error is not None:
            return self
        try:
            layer = FileLayer(path, media_type=media_type, annotations=annotations)
        except OCIBootError as e:
            self._error = e
            return self
        self._layers.append(layer)
        return self

    def layers(self, *layers: Layer) -> "ImageBuilder":
        if self._error is None:
            self._layers.extend(layers)
        return self

    def complete(
        self,
        media_type: str | None = None,
        annotations: Mapping[str, str] | None = None,
    ) -> ManifestImage:
        """Assemble the manifest and return the image

        The manifest descriptor gets the image manifest media type unless
        `media_type` is given, and carries `annotations` if given.
        """
        if self._error is not None:
            raise self._error

        layers = list(self._layers)
        manifest = Manifest(
            config=self._config.descriptor,
            layers=[layer.descriptor for layer in layers],
        )
        data = manifest.dump()
        descriptor = _image_descriptor(
            data, media_type or MEDIA_TYPE_IMAGE_MANIFEST, annotations
        )
        logger.debug("Built image manifest %s", descriptor.digest)

        source = MemorySource(
            [self._config, *layers, BytesLayer(data, media_type=descriptor.mediaType)]
        )
        return ManifestImage(descriptor, source)


class IndexBuilder:
    """Builds a multi-arch index image from per-platform manifest images"""

    def __init__(self):
        self._index = Index(schemaVersion=2, mediaType=MEDIA_TYPE_IMAGE_INDEX)
        self._layers: list[Layer] = []
        self._error: Exception | None = None

    def manifest(self, image: ManifestImage, platform: Platform) -> "IndexBuilder":
        """Add `image` for `platform`, replacing an image added earlier for it"""
        if self._error is not None:
            return self
        if not isinstance(image, ManifestImage):
            self._error = UnsupportedMediaTypeError(
                f"Only manifest images can be added to an index, "
                f"got {image.descriptor.mediaType!r}"
            )
            return self
        try:
            write_layers = as_write_layers(image)
        except OCIBootError as e:
            self._error = e
            return self
        self._layers.extend(write_layers)
        self._index.add_manifest(
            image.descriptor.model_copy(deep=True, update={"platform": platform})
        )
        return self

    def complete(
        self,
        annotations: Mapping[str, str] | None = None,
        descriptor_annotations: Mapping[str, str] | None = None,
    ) -> IndexImage:
        """Assemble the index

        `annotations` end up in the index document, `descriptor_annotations`
        on the descriptor of the index.
        """
        if self._error is not None:
            raise self._error

        index = self._index.model_copy(deep=True)
        if annotations:
            index.annotations = dict(annotations)
        data = index.dump()
        descriptor = _image_descriptor(
            data, MEDIA_TYPE_IMAGE_INDEX, descriptor_annotations
        )
        logger.debug(
            "Built image index %s with %d manifests",
            descriptor.digest,
            len(index.manifests),
        )

        source = MemorySource(
            [*self._layers, BytesLayer(data, media_type=descriptor.mediaType)]
        )
        return IndexImage(descriptor, source)
