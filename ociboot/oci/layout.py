"""OCI image layout: a blob store and a reference index under one directory

ref: https://github.com/opencontainers/image-spec/blob/main/image-layout.md
"""
import logging
from pathlib import Path

from ociboot.errors import StorageError
from ociboot.oci import matcher
from ociboot.oci.content import BlobStore
from ociboot.oci.descriptor import Descriptor
from ociboot.oci.image import (
    Image,
    as_write_layers,
    open_image,
)
from ociboot.oci.indexer import FILENAME, FileIndexStorage, IndexStorage, ReferenceIndex

logger = logging.getLogger(__name__)

OCI_LAYOUT_FILENAME = "oci-layout"
OCI_LAYOUT_CONTENT = b'{"imageLayoutVersion":"1.0.0"}'


class Layout:
    """Blobs are always written before the descriptor referencing them is indexed"""

    def __init__(self, path: Path, index_storage: IndexStorage | None = None):
        self.path = Path(path)
        self.store = BlobStore(self.path)
        if index_storage is None:
            index_storage = FileIndexStorage(self.path / FILENAME)
        self.indexer = ReferenceIndex(index_storage)
        try:
            (self.path / OCI_LAYOUT_FILENAME).write_bytes(OCI_LAYOUT_CONTENT)
        except OSError as e:
            raise StorageError(f"Error writing oci layout: {e}") from e

    def __repr__(self):
        return f"Layout({str(self.path)!r})"

    def write_image(self, image: Image):
        """Write the config, layers and manifest of `image` to the blob store"""
        for layer in as_write_layers(image):
            self.store.write_layer(layer)

    def add_image(self, image: Image):
        self.write_image(image)
        self.indexer.add(image.descriptor)
        logger.info("Added image %s", image.descriptor.digest)

    def replace_image(self, image: Image, match: matcher.Matcher):
        self.write_image(image)
        self.indexer.replace(image.descriptor, match)
        logger.info("Replaced image %s", image.descriptor.digest)

    def index_image(self, image: Image):
        """Write and index `image`, superseding a previous build under the same name"""
        self.write_image(image)
        self.indexer.index(image.descriptor)
        logger.info("Indexed image %s", image.descriptor.digest)

    def image(self, descriptor: Descriptor) -> Image:
        """Open the image for an indexed descriptor"""
        found = self.indexer.find(matcher.equal(descriptor))
        return open_image(found, self.store)
