"""OCI image store for Python

Content-addressed storage of OCI images in an image layout directory, a
reference index naming them, and a bridge to OCI registries.
"""
from ociboot.oci.builder import ImageBuilder, IndexBuilder
from ociboot.oci.descriptor import (
    ANNOTATION_REF_NAME,
    ANNOTATION_TAG,
    MEDIA_TYPE_IMAGE_INDEX,
    MEDIA_TYPE_IMAGE_MANIFEST,
    Descriptor,
    Platform,
)
from ociboot.oci.image import (
    Image,
    IndexImage,
    ManifestImage,
    as_write_layers,
    copy_image,
    open_image,
)
from ociboot.oci.indexer import FileIndexStorage, MemoryIndexStorage, ReferenceIndex
from ociboot.oci.layer import BytesLayer, FileLayer, json_layer, read_layer
from ociboot.oci.remote import Registry
from ociboot.oci.store import Store

__all__ = [
    "ANNOTATION_REF_NAME",
    "ANNOTATION_TAG",
    "MEDIA_TYPE_IMAGE_INDEX",
    "MEDIA_TYPE_IMAGE_MANIFEST",
    "BytesLayer",
    "Descriptor",
    "FileIndexStorage",
    "FileLayer",
    "Image",
    "ImageBuilder",
    "IndexBuilder",
    "IndexImage",
    "ManifestImage",
    "MemoryIndexStorage",
    "Platform",
    "ReferenceIndex",
    "Registry",
    "Store",
    "as_write_layers",
    "copy_image",
    "json_layer",
    "open_image",
    "read_layer",
]
