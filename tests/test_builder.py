import json

import pytest

from ociboot.errors import EncodeError, StorageError, UnsupportedMediaTypeError
from ociboot.oci import ImageBuilder, IndexBuilder, Platform, read_layer
from ociboot.oci.config import EMPTY_CONFIG_DIGEST, EmptyConfig
from ociboot.oci.descriptor import MEDIA_TYPE_IMAGE_INDEX, MEDIA_TYPE_IMAGE_MANIFEST
from ociboot.oci.image import as_write_layers

CONFIG = "application/vnd.test.config+json"
LAYER = "application/vnd.test.layer"


def build(*layers: bytes, config=None):
    builder = ImageBuilder.from_json(config or {"a": 1}, media_type=CONFIG)
    for data in layers:
        builder.bytes_layer(data, media_type=LAYER)
    return builder.complete()


def test_empty_config_digest():
    assert EmptyConfig().descriptor.digest == EMPTY_CONFIG_DIGEST


def test_manifest():
    image = build(b"one", b"two")
    manifest = image.manifest()
    assert image.descriptor.mediaType == MEDIA_TYPE_IMAGE_MANIFEST
    assert manifest.config.mediaType == CONFIG
    assert [read_layer(layer) for layer in image.layers()] == [b"one", b"two"]
    assert json.loads(read_layer(image.config())) == {"a": 1}
    assert image.descriptor.size == len(read_layer(image))


def test_digest_determinism():
    assert build(b"one", b"two").descriptor == build(b"one", b"two").descriptor


def test_layer_order_changes_digest():
    assert build(b"one", b"two").descriptor.digest != build(b"two", b"one").descriptor.digest


def test_media_type_override_and_annotations():
    image = (
        ImageBuilder.from_bytes(b"{}", media_type=CONFIG)
        .complete(media_type="application/vnd.test.manifest", annotations={"k": "v"})
    )
    assert image.descriptor.mediaType == "application/vnd.test.manifest"
    assert image.descriptor.annotations == {"k": "v"}


def test_file_layer(tmp_path):
    path = tmp_path / "layer"
    path.write_bytes(b"file content")
    image = ImageBuilder.from_json({}, media_type=CONFIG).file_layer(path, LAYER).complete()
    (layer,) = image.layers()
    assert read_layer(layer) == b"file content"
    assert layer.descriptor.size == len(b"file content")


def test_fail_fast_on_missing_file(tmp_path):
    builder = (
        ImageBuilder.from_json({}, media_type=CONFIG)
        .file_layer(tmp_path / "missing", LAYER)
        .bytes_layer(b"ignored", LAYER)
    )
    with pytest.raises(StorageError):
        builder.complete()


def test_fail_fast_on_config():
    builder = ImageBuilder.from_json({"x": object()}, media_type=CONFIG)
    builder.bytes_layer(b"ignored", LAYER)
    with pytest.raises(EncodeError):
        builder.complete()


@pytest.mark.parametrize("value", [float("nan"), float("inf")])
def test_config_rejects_non_finite_numbers(value):
    builder = ImageBuilder.from_json({"x": value}, media_type=CONFIG)
    with pytest.raises(EncodeError):
        builder.complete()


def test_write_layers_order():
    image = build(b"one", b"two")
    layers = as_write_layers(image)
    assert [layer.descriptor.mediaType for layer in layers] == [
        CONFIG,
        LAYER,
        LAYER,
        MEDIA_TYPE_IMAGE_MANIFEST,
    ]


def test_index_builder():
    amd64 = build(b"amd64")
    arm64 = build(b"arm64")
    index = (
        IndexBuilder()
        .manifest(amd64, Platform(architecture="amd64", os="linux"))
        .manifest(arm64, Platform(architecture="arm64", os="linux"))
        .complete(annotations={"k": "v"})
    )
    assert index.descriptor.mediaType == MEDIA_TYPE_IMAGE_INDEX
    assert [d.digest for d in index.manifests()] == [
        amd64.descriptor.digest,
        arm64.descriptor.digest,
    ]
    assert index.index().annotations == {"k": "v"}
    selected = index.platform_image(Platform(architecture="arm64", os="linux"))
    assert selected.descriptor.digest == arm64.descriptor.digest
    assert [read_layer(layer) for layer in selected.layers()] == [b"arm64"]


def test_index_builder_replaces_platform():
    platform = Platform(architecture="amd64", os="linux")
    second = build(b"second")
    index = IndexBuilder().manifest(build(b"first"), platform).manifest(second, platform)
    (entry,) = index.complete().manifests()
    assert entry.digest == second.descriptor.digest


def test_index_builder_rejects_index():
    inner = IndexBuilder().manifest(build(b"x"), Platform(architecture="amd64", os="linux"))
    with pytest.raises(UnsupportedMediaTypeError):
        IndexBuilder().manifest(
            inner.complete(), Platform(architecture="arm64", os="linux")
        ).complete()


def test_index_write_layers():
    image = build(b"x")
    index = IndexBuilder().manifest(image, Platform(architecture="amd64", os="linux"))
    layers = as_write_layers(index.complete())
    assert layers[0].descriptor.digest == EMPTY_CONFIG_DIGEST
    assert [layer.descriptor.digest for layer in layers[1:-1]] == [
        layer.descriptor.digest for layer in as_write_layers(image)
    ]
    assert layers[-1].descriptor.mediaType == MEDIA_TYPE_IMAGE_INDEX
