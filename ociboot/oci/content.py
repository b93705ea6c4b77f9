"""Content-addressed blob storage

Layout: {root}/blobs/{algorithm}/{encoded}
"""
import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import BinaryIO

from ociboot.errors import NotFoundError, StorageError
from ociboot.oci.descriptor import Descriptor, split_digest
from ociboot.oci.layer import Layer

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024


def _current_umask() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return umask


def commit_file(tmp: str, path: Path):
    """Move a finished temp file into place with regular file permissions

    `mkstemp` creates owner-only files, the result gets 0666 minus the umask.
    """
    os.chmod(tmp, 0o666 & ~_current_umask())
    os.replace(tmp, path)


class BlobStore:
    """Blob store on the local filesystem

    Blobs are immutable: writing a blob that already exists is a no-op.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.blobs = self.root / "blobs"
        try:
            self.blobs.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Error creating blob directory {self.blobs}: {e}") from e

    def __repr__(self):
        return f"BlobStore({str(self.root)!r})"

    def path(self, digest: str) -> Path:
        algorithm, encoded = split_digest(digest)
        return self.blobs / algorithm / encoded

    def exists(self, descriptor: Descriptor) -> bool:
        path = self.path(descriptor.digest)
        return path.is_file() and path.stat().st_size == descriptor.size

    def write(self, descriptor: Descriptor, stream: BinaryIO):
        """Write the content of `descriptor` read from `stream`

        The content is verified against the size and digest of the descriptor
        before it becomes visible in the store.
        """
        if self.exists(descriptor):
            logger.debug("Blob already exists: %s", descriptor.digest)
            return

        path = self.path(descriptor.digest)
        algorithm = descriptor.algorithm
        try:
            hasher = hashlib.new(algorithm)
        except ValueError as e:
            raise StorageError(f"Unsupported digest algorithm {algorithm!r}") from e

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".ingest-")
        except OSError as e:
            raise StorageError(f"Error writing blob {descriptor.digest}: {e}") from e
        try:
            size = 0
            with os.fdopen(fd, "wb") as f:
                for chunk in iter(lambda: stream.read(_CHUNK_SIZE), b""):
                    hasher.update(chunk)
                    size += len(chunk)
                    f.write(chunk)
            if size != descriptor.size:
                raise StorageError(
                    f"Unexpected size for {descriptor.digest}: "
                    f"expected {descriptor.size}, got {size}"
                )
            actual = f"{algorithm}:{hasher.hexdigest()}"
            if actual != descriptor.digest:
                raise StorageError(
                    f"Digest mismatch: expected {descriptor.digest}, got {actual}"
                )
            commit_file(tmp, path)
        except StorageError:
            Path(tmp).unlink(missing_ok=True)
            raise
        except OSError as e:
            Path(tmp).unlink(missing_ok=True)
            raise StorageError(f"Error writing blob {descriptor.digest}: {e}") from e
        logger.debug("Wrote blob %s (%d bytes)", descriptor.digest, size)

    def write_layer(self, layer: Layer):
        with layer.content() as f:
            self.write(layer.descriptor, f)

    def open(self, descriptor: Descriptor) -> BinaryIO:
        try:
            return self.path(descriptor.digest).open("rb")
        except FileNotFoundError:
            raise NotFoundError(f"Blob not found: {descriptor.digest}") from None
        except OSError as e:
            raise StorageError(f"Error reading blob {descriptor.digest}: {e}") from e
