import logging

from pydantic import BaseModel, ValidationError

from ociboot.errors import DecodeError
from ociboot.oci.descriptor import Descriptor

logger = logging.getLogger(__name__)


class Index(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md

    Used both for the `index.json` of a local store and for multi-arch index manifests.
    """

    schemaVersion: int = 2
    mediaType: str | None = None
    manifests: list[Descriptor] = []
    annotations: dict[str, str] | None = None

    def add_manifest(self, descriptor: Descriptor):
        """Add a platform manifest, an index holds at most one manifest per platform"""
        if descriptor.platform is None:
            raise ValueError(f"Manifest {descriptor.digest} has no platform")
        key = (descriptor.platform.architecture, descriptor.platform.os)
        for idx, existing in enumerate(self.manifests):
            if existing.platform is None:
                continue
            if (existing.platform.architecture, existing.platform.os) != key:
                continue
            if existing.digest != descriptor.digest:
                logger.warning(
                    "Platform '%s' already exists with different content, overwriting.",
                    descriptor.platform,
                )
            else:
                logger.info("Platform '%s' already exists, skipping.", descriptor.platform)
            self.manifests[idx] = descriptor
            return
        self.manifests.append(descriptor)

    def dump(self) -> bytes:
        return self.model_dump_json(exclude_none=True).encode("utf-8")

    @classmethod
    def load(cls, data: bytes) -> "Index":
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise DecodeError(f"Could not decode index: {e}") from e
