from pydantic import BaseModel, ValidationError

from ociboot.errors import DecodeError
from ociboot.oci.descriptor import MEDIA_TYPE_IMAGE_MANIFEST, Descriptor


class Manifest(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/manifest.md
    """

    schemaVersion: int = 2
    mediaType: str = MEDIA_TYPE_IMAGE_MANIFEST
    config: Descriptor
    layers: list[Descriptor] = []
    annotations: dict[str, str] | None = None

    def dump(self) -> bytes:
        """Canonical serialized form, the manifest digest is computed over these bytes"""
        return self.model_dump_json(exclude_none=True).encode("utf-8")

    @classmethod
    def load(cls, data: bytes) -> "Manifest":
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise DecodeError(f"Could not decode image manifest: {e}") from e
