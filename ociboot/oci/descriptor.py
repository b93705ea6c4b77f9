import re
from hashlib import sha256
from pathlib import Path
from typing import BinaryIO, Mapping

from pydantic import BaseModel, ConfigDict, field_validator

MEDIA_TYPE_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MEDIA_TYPE_IMAGE_INDEX = "application/vnd.oci.image.index.v1+json"

# Holds the full reference name, "repository[:tag]"
ANNOTATION_REF_NAME = "org.opencontainers.image.ref.name"
# Holds the plain tag of a tagged reference name
ANNOTATION_TAG = "dev.ociboot.image.tag"

CANONICAL_ALGORITHM = "sha256"
DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[+._-][a-z0-9]+)*:[a-zA-Z0-9=_-]+$")

_CHUNK_SIZE = 1024 * 1024


def digest_from_bytes(data: bytes) -> str:
    return f"{CANONICAL_ALGORITHM}:{sha256(data).hexdigest()}"


def digest_from_stream(stream: BinaryIO) -> tuple[str, int]:
    """Digest a stream in chunks, return the digest and the number of bytes read"""
    hasher = sha256()
    size = 0
    for chunk in iter(lambda: stream.read(_CHUNK_SIZE), b""):
        hasher.update(chunk)
        size += len(chunk)
    return f"{CANONICAL_ALGORITHM}:{hasher.hexdigest()}", size


def digest_from_file(path: Path) -> tuple[str, int]:
    with path.open("rb") as f:
        return digest_from_stream(f)


def split_digest(digest: str) -> tuple[str, str]:
    """Split a digest into its algorithm and encoded part"""
    if not DIGEST_RE.match(digest):
        raise ValueError(f"Invalid digest: {digest!r}")
    algorithm, encoded = digest.split(":", 1)
    return algorithm, encoded


class Platform(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    model_config = ConfigDict(frozen=True)

    architecture: str
    os: str
    osVersion: str | None = None
    osFeatures: list[str] | None = None
    variant: str | None = None

    def __str__(self):
        parts = [self.os, self.architecture]
        if self.variant:
            parts.append(self.variant)
        return "/".join(parts)


class Descriptor(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/descriptor.md

    Descriptors are values, derive new ones with `copy_descriptor`,
    `with_annotations` or `with_name` instead of mutating.
    """

    model_config = ConfigDict(frozen=True)

    mediaType: str
    digest: str
    size: int
    urls: list[str] | None = None
    annotations: dict[str, str] | None = None
    platform: Platform | None = None
    artifactType: str | None = None

    @field_validator("digest")
    @classmethod
    def _validate_digest(cls, value: str) -> str:
        split_digest(value)
        return value

    @field_validator("size")
    @classmethod
    def _validate_size(cls, value: int) -> int:
        if value < 0:
            raise ValueError(f"Invalid size: {value}")
        return value

    @property
    def algorithm(self) -> str:
        return split_digest(self.digest)[0]

    @property
    def encoded(self) -> str:
        """The encoded (hex) part of the digest"""
        return split_digest(self.digest)[1]

    @property
    def ref_name(self) -> str | None:
        if not self.annotations:
            return None
        return self.annotations.get(ANNOTATION_REF_NAME) or None


def copy_descriptor(descriptor: Descriptor) -> Descriptor:
    """Return a copy of `descriptor` that shares no mutable state with it"""
    return descriptor.model_copy(deep=True)


def with_annotations(
    descriptor: Descriptor, annotations: Mapping[str, str]
) -> Descriptor:
    """Return a copy of `descriptor` with `annotations` merged into its annotations"""
    merged = dict(descriptor.annotations or {})
    merged.update(annotations)
    return descriptor.model_copy(
        deep=True, update={"annotations": merged or descriptor.annotations}
    )


def with_name(descriptor: Descriptor, name: str) -> Descriptor:
    return with_annotations(descriptor, {ANNOTATION_REF_NAME: name})


def plain(descriptor: Descriptor) -> Descriptor:
    """Strip everything but the identity of the content (and its platform)"""
    return Descriptor(
        mediaType=descriptor.mediaType,
        digest=descriptor.digest,
        size=descriptor.size,
        platform=descriptor.platform,
    )
