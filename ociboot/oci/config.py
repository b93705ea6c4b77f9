from typing import Final

from ociboot.oci.layer import BytesLayer

MEDIA_TYPE_EMPTY = "application/vnd.oci.empty.v1+json"


def EmptyConfig() -> BytesLayer:
    """The `{}` placeholder config used by artifacts without a config of their own

    ref: https://github.com/opencontainers/image-spec/blob/main/manifest.md#guidance-for-an-empty-descriptor
    """
    return BytesLayer(b"{}", media_type=MEDIA_TYPE_EMPTY)


EMPTY_CONFIG_DIGEST: Final[str] = (
    "sha256:44136fa355b3678a1146ad16f7e8649e94fb4fc21fe77e8310c060f61caaff8a"
)
