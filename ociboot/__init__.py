"""Machine boot images as OCI images

A boot image is a manifest image with a JSON config and exactly three layers:
a kernel, an initramfs and a root filesystem, each identified by media type.
"""
import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ValidationError

from ociboot.errors import DecodeError, IncompleteImageError, UnsupportedMediaTypeError
from ociboot.oci.builder import ImageBuilder
from ociboot.oci.image import Image, ManifestImage, SourceLayer
from ociboot.oci.layer import read_layer

logger = logging.getLogger(__name__)

CONFIG_MEDIA_TYPE = "application/vnd.ociboot.image.config.v1alpha1+json"
ROOTFS_LAYER_MEDIA_TYPE = "application/vnd.ociboot.image.rootfs.v1alpha1.rootfs"
INITRAMFS_LAYER_MEDIA_TYPE = (
    "application/vnd.ociboot.image.initramfs.v1alpha1.initramfs"
)
KERNEL_LAYER_MEDIA_TYPE = "application/vnd.ociboot.image.vmlinuz.v1alpha1.vmlinuz"

LAYER_MEDIA_TYPES = {
    ROOTFS_LAYER_MEDIA_TYPE: "rootfs",
    INITRAMFS_LAYER_MEDIA_TYPE: "initramfs",
    KERNEL_LAYER_MEDIA_TYPE: "kernel",
}


class Config(BaseModel):
    commandLine: str | None = None


def read_config(layer: SourceLayer) -> Config:
    try:
        return Config.model_validate_json(read_layer(layer))
    except ValidationError as e:
        raise DecodeError(f"Invalid boot image config {layer.descriptor.digest}") from e


@dataclass
class BootImage:
    config: Config
    kernel: SourceLayer
    initramfs: SourceLayer
    rootfs: SourceLayer


def resolve_boot_image(image: Image) -> BootImage:
    """Split `image` into its config and boot layers

    Raises `IncompleteImageError` if the config media type is wrong or a layer
    is missing, duplicated or of an unknown media type.
    """
    if not isinstance(image, ManifestImage):
        raise UnsupportedMediaTypeError(
            f"Boot images are manifest images, got {image.descriptor.mediaType!r}"
        )

    config_layer = image.config()
    if config_layer.descriptor.mediaType != CONFIG_MEDIA_TYPE:
        raise IncompleteImageError(
            f"Unexpected config media type {config_layer.descriptor.mediaType!r}"
        )

    layers: dict[str, SourceLayer] = {}
    for layer in image.layers():
        kind = LAYER_MEDIA_TYPES.get(layer.descriptor.mediaType)
        if kind is None:
            raise IncompleteImageError(
                f"Unknown layer media type {layer.descriptor.mediaType!r}"
            )
        if kind in layers:
            raise IncompleteImageError(f"Duplicate {kind} layer")
        layers[kind] = layer

    missing = sorted(set(LAYER_MEDIA_TYPES.values()) - layers.keys())
    if missing:
        raise IncompleteImageError(f"Missing layers: {', '.join(missing)}")

    return BootImage(config=read_config(config_layer), **layers)


def build_boot_image(
    kernel: Path,
    initramfs: Path,
    rootfs: Path,
    command_line: str | None = None,
) -> ManifestImage:
    """Assemble a boot image from files, layers ordered rootfs, initramfs, kernel"""
    logger.debug("Building boot image from %s, %s, %s", kernel, initramfs, rootfs)
    return (
        ImageBuilder.from_json(
            Config(commandLine=command_line or None), media_type=CONFIG_MEDIA_TYPE
        )
        .file_layer(rootfs, media_type=ROOTFS_LAYER_MEDIA_TYPE)
        .file_layer(initramfs, media_type=INITRAMFS_LAYER_MEDIA_TYPE)
        .file_layer(kernel, media_type=KERNEL_LAYER_MEDIA_TYPE)
        .complete()
    )
