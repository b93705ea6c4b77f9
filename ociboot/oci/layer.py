import io
import json
from pathlib import Path
from typing import Any, BinaryIO, Mapping, Protocol

from pydantic import BaseModel

from ociboot.errors import EncodeError, StorageError
from ociboot.oci.descriptor import Descriptor, digest_from_bytes, digest_from_file


class Layer(Protocol):
    """A piece of content together with the descriptor that identifies it."""

    @property
    def descriptor(self) -> Descriptor: ...

    def content(self) -> BinaryIO: ...


def read_layer(layer: Layer) -> bytes:
    """Read the full content of a layer"""
    with layer.content() as f:
        return f.read()


class BytesLayer:
    """In-memory layer, digest and size are derived from the data"""

    def __init__(
        self,
        data: bytes,
        media_type: str = "application/octet-stream",
        annotations: Mapping[str, str] | None = None,
    ):
        self.data = data
        self.descriptor = Descriptor(
            mediaType=media_type,
            digest=digest_from_bytes(data),
            size=len(data),
            annotations=dict(annotations) if annotations else None,
        )

    def content(self) -> BinaryIO:
        return io.BytesIO(self.data)

    def __repr__(self):
        return f"BytesLayer({self.descriptor.digest})"


class FileLayer:
    """Layer backed by a file

    The file is hashed once on construction and re-opened on every `content()`.
    """

    def __init__(
        self,
        path: Path,
        media_type: str = "application/octet-stream",
        annotations: Mapping[str, str] | None = None,
    ):
        self.path = Path(path)
        if not self.path.is_file():
            raise StorageError(f"{self.path} is not a file")
        try:
            digest, size = digest_from_file(self.path)
        except OSError as e:
            raise StorageError(f"Error reading {self.path}: {e}") from e
        self.descriptor = Descriptor(
            mediaType=media_type,
            digest=digest,
            size=size,
            annotations=dict(annotations) if annotations else None,
        )

    def content(self) -> BinaryIO:
        return self.path.open("rb")

    def __repr__(self):
        return f"FileLayer({str(self.path)!r}, {self.descriptor.digest})"


def json_layer(
    value: Any,
    media_type: str = "application/json",
    annotations: Mapping[str, str] | None = None,
) -> BytesLayer:
    """Serialize `value` to JSON and wrap it in a layer"""
    try:
        if isinstance(value, BaseModel):
            data = value.model_dump_json(exclude_none=True).encode("utf-8")
        else:
            data = json.dumps(
                value, separators=(",", ":"), allow_nan=False
            ).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise EncodeError(f"Could not encode {value!r} as JSON: {e}") from e
    return BytesLayer(data, media_type=media_type, annotations=annotations)
