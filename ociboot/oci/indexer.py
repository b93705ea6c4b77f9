"""Reference index: the persisted list of descriptors that maps names to content

The index is read and written as a whole on every operation. A store path
supports a single writer at a time: concurrent writers are not detected and
the last write wins.
"""
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from ociboot.errors import NotFoundError, StorageError
from ociboot.oci import matcher
from ociboot.oci.content import commit_file
from ociboot.oci.descriptor import Descriptor
from ociboot.oci.index import Index

logger = logging.getLogger(__name__)

FILENAME = "index.json"


class IndexStorage(Protocol):
    """Reads and writes a whole index document"""

    def exists(self) -> bool: ...

    def read(self) -> Index: ...

    def write(self, index: Index) -> None: ...


class FileIndexStorage:
    """Index stored as a single JSON file"""

    def __init__(self, path: Path):
        self.path = Path(path)

    def __repr__(self):
        return f"FileIndexStorage({str(self.path)!r})"

    def exists(self) -> bool:
        return self.path.is_file()

    def read(self) -> Index:
        try:
            data = self.path.read_bytes()
        except OSError as e:
            raise StorageError(f"Error reading index file {self.path}: {e}") from e
        return Index.load(data)

    def write(self, index: Index):
        data = index.dump()
        # Write next to the index and rename, readers never see a partial file
        try:
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".index-")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                commit_file(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Error writing index file {self.path}: {e}") from e


class MemoryIndexStorage:
    """Index kept in memory, the document is copied on every read and write"""

    def __init__(self, index: Index | None = None):
        self._data = index.dump() if index is not None else None

    def exists(self) -> bool:
        return self._data is not None

    def read(self) -> Index:
        if self._data is None:
            raise StorageError("Index has not been written")
        return Index.load(self._data)

    def write(self, index: Index):
        self._data = index.dump()


def should_overwrite(existing: Descriptor, new: Descriptor) -> bool:
    """Whether indexing `new` should overwrite the `existing` entry

    Entries are only overwritten if the media types match and either both carry
    the same reference name, or both carry none and their digests are equal.
    """
    if existing.mediaType != new.mediaType:
        return False
    if existing.ref_name != new.ref_name:
        return False
    if existing.ref_name is not None:
        return True
    return existing.digest == new.digest


class ReferenceIndex:
    def __init__(self, storage: IndexStorage):
        self.storage = storage
        if storage.exists():
            # Fail early on an unreadable or corrupt index
            storage.read()
        else:
            logger.debug("Initializing empty index in %s", storage)
            storage.write(Index(schemaVersion=2, manifests=[]))

    @classmethod
    def new(cls, path: Path) -> "ReferenceIndex":
        """Open the index file at `path`, creating it and its parents if needed"""
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Error creating base directory {path.parent}: {e}") from e
        return cls(FileIndexStorage(path))

    def _read(self) -> Index:
        return self.storage.read()

    def _write(self, index: Index):
        self.storage.write(index)

    def add(self, descriptor: Descriptor):
        index = self._read()
        index.manifests.append(descriptor)
        self._write(index)
        logger.debug("Added %s to index", descriptor.digest)

    def find(self, match: matcher.Matcher) -> Descriptor:
        for descriptor in self._read().manifests:
            if match(descriptor):
                return descriptor
        raise NotFoundError("No index entry matching")

    def list(self, match: matcher.Matcher = matcher.every) -> list[Descriptor]:
        return [d for d in self._read().manifests if match(d)]

    def replace(self, descriptor: Descriptor, match: matcher.Matcher):
        """Remove all entries matching `match`, then append `descriptor`"""
        index = self._read()
        remaining = [d for d in index.manifests if not match(d)]
        removed = len(index.manifests) - len(remaining)
        index.manifests = remaining + [descriptor]
        self._write(index)
        logger.debug(
            "Replaced %d index entries with %s", removed, descriptor.digest
        )

    def delete(self, match: matcher.Matcher) -> int:
        """Remove all entries matching `match`, return the number of removed entries"""
        index = self._read()
        remaining = [d for d in index.manifests if not match(d)]
        removed = len(index.manifests) - len(remaining)
        index.manifests = remaining
        self._write(index)
        logger.debug("Deleted %d index entries", removed)
        return removed

    def index(self, descriptor: Descriptor):
        """Add `descriptor`, overwriting the entry it supersedes if there is one

        See `should_overwrite` for when an entry is superseded.
        """
        index = self._read()
        for idx, existing in enumerate(index.manifests):
            if should_overwrite(existing, descriptor):
                logger.debug(
                    "Overwriting index entry %s with %s",
                    existing.digest,
                    descriptor.digest,
                )
                index.manifests[idx] = descriptor
                break
        else:
            index.manifests.append(descriptor)
        self._write(index)
