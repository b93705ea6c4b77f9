import io
import json

import pytest

import ociboot
from ociboot.errors import InvalidReferenceError, NotFoundError, StorageError
from ociboot.oci import (
    BytesLayer,
    ImageBuilder,
    IndexBuilder,
    ManifestImage,
    Platform,
    Store,
    read_layer,
)
from ociboot.oci.descriptor import (
    ANNOTATION_REF_NAME,
    MEDIA_TYPE_IMAGE_INDEX,
    MEDIA_TYPE_IMAGE_MANIFEST,
)


def layer_contents(image):
    return [read_layer(layer) for layer in image.layers()]


def names(store):
    return [d.ref_name for d in store.list() if d.ref_name is not None]


def test_layout_files(store, store_path):
    assert json.loads((store_path / "oci-layout").read_text()) == {
        "imageLayoutVersion": "1.0.0"
    }
    assert json.loads((store_path / "index.json").read_text()) == {
        "schemaVersion": 2,
        "manifests": [],
    }


def test_push_resolve_delete(store, boot_image):
    store.push("img:v1", boot_image)

    (entry,) = [d for d in store.list() if d.ref_name is not None]
    assert entry.annotations == {ANNOTATION_REF_NAME: "img:v1"}
    assert entry.digest == boot_image.descriptor.digest

    image = store.resolve("img:v1")
    assert isinstance(image, ManifestImage)
    assert layer_contents(image) == [b"K", b"I", b"R"]

    store.delete("img:v1")
    with pytest.raises(NotFoundError):
        store.resolve("img:v1")


def test_blobs_written(store, store_path, boot_image):
    store.push("img:v1", boot_image)
    manifest = boot_image.manifest()
    for d in [boot_image.descriptor, manifest.config, *manifest.layers]:
        algorithm, encoded = d.digest.split(":")
        assert (store_path / "blobs" / algorithm / encoded).stat().st_size == d.size


def test_round_trip_by_digest(store, boot_image):
    store.put(boot_image)
    image = store.resolve(boot_image.descriptor.digest)
    assert layer_contents(image) == [b"K", b"I", b"R"]
    assert read_layer(image.config()) == b"{}"


def test_put_is_idempotent(store, boot_image):
    store.put(boot_image)
    store.put(boot_image)
    (entry,) = store.list()
    assert entry.ref_name is None


def test_put_keeps_names(store, boot_image):
    store.push("img:v1", boot_image)
    store.put(boot_image)
    assert len(store.list()) == 2
    assert names(store) == ["img:v1"]


def test_tag_idempotent(store, boot_image):
    store.put(boot_image)
    store.tag(boot_image.descriptor.digest, "name:v1")
    store.tag(boot_image.descriptor.digest, "name:v1")
    assert names(store) == ["name:v1"]


def test_tag_moves_name(store, boot_image):
    other = ImageBuilder.from_json({}, "application/json").complete()
    store.push("img:v1", boot_image)
    store.push("img:v2", other)
    store.tag("img:v2", "img:latest")
    store.tag("img:v1", "img:latest")
    assert sorted(names(store)) == ["img:latest", "img:v1", "img:v2"]
    assert store.resolve("img:latest").descriptor.digest == boot_image.descriptor.digest


@pytest.mark.parametrize("dst", [f"img@sha256:{'a' * 64}", "a" * 64, "UPPER"])
def test_tag_requires_name(store, boot_image, dst):
    store.push("img:v1", boot_image)
    with pytest.raises(InvalidReferenceError):
        store.tag("img:v1", dst)


def test_tag_unknown_source(store):
    with pytest.raises(NotFoundError):
        store.tag("missing", "img:v1")


def test_untag(store, boot_image):
    store.push("img:v1", boot_image)
    store.tag("img:v1", "img:v2")
    assert store.untag("img:v1") == 1
    assert store.untag("img:v1") == 0
    assert store.resolve("img:v2").descriptor.digest == boot_image.descriptor.digest
    assert store.resolve(boot_image.descriptor.digest)


def test_delete_by_digest_removes_all_entries(store, boot_image):
    store.push("img:v1", boot_image)
    store.tag("img:v1", "img:v2")
    assert store.delete(boot_image.descriptor.digest) == 3
    assert store.list() == []


def test_build_overwrites_same_name(store, boot_image):
    store.build(boot_image, ref="img:v1")
    rebuilt = ImageBuilder.from_json({"rebuilt": True}, "application/json").complete()
    store.build(rebuilt, ref="img:v1")
    (entry,) = store.list()
    assert entry.digest == rebuilt.descriptor.digest
    assert entry.ref_name == "img:v1"


def test_build_other_name_same_digest_appends(store, boot_image):
    store.build(boot_image, ref="img:v1")
    store.build(boot_image, ref="img:v2")
    assert names(store) == ["img:v1", "img:v2"]


def test_build_unnamed(store, boot_image):
    store.build(boot_image)
    store.build(boot_image)
    (entry,) = store.list()
    assert entry.ref_name is None


def test_fuzzy_resolve(store, boot_image):
    store.push("img:v1", boot_image)
    encoded = boot_image.descriptor.encoded
    assert store.fuzzy_resolve(encoded[:7]).digest == boot_image.descriptor.digest
    assert store.fuzzy_resolve("img:v1").ref_name == "img:v1"


def test_memory_index_storage(memory_store, boot_image):
    memory_store.push("img:v1", boot_image)
    assert layer_contents(memory_store.resolve("img:v1")) == [b"K", b"I", b"R"]
    assert not (memory_store.layout.path / "index.json").exists()


def test_reopen(store_path, boot_image):
    Store(store_path).push("img:v1", boot_image)
    assert layer_contents(Store(store_path).resolve("img:v1")) == [b"K", b"I", b"R"]


def test_multi_arch(store, boot_image):
    arm64 = ImageBuilder.from_json({"arch": "arm64"}, "application/json").complete()
    index = (
        IndexBuilder()
        .manifest(boot_image, Platform(architecture="amd64", os="linux"))
        .manifest(arm64, Platform(architecture="arm64", os="linux"))
        .complete()
    )
    store.push("multi:v1", index)

    resolved = store.resolve("multi:v1")
    assert resolved.descriptor.mediaType == MEDIA_TYPE_IMAGE_INDEX
    selected = resolved.platform_image(Platform(architecture="arm64", os="linux"))
    assert selected.descriptor.digest == arm64.descriptor.digest
    assert selected.descriptor.platform.architecture == "arm64"
    assert read_layer(selected.config()) == b'{"arch":"arm64"}'

    assert store.list() == []
    both = (MEDIA_TYPE_IMAGE_MANIFEST, MEDIA_TYPE_IMAGE_INDEX)
    assert [d.mediaType for d in store.list(media_types=both)] == [
        MEDIA_TYPE_IMAGE_INDEX,
        MEDIA_TYPE_IMAGE_INDEX,
    ]


def test_layout_add_image(store, boot_image):
    layout = store.layout
    layout.add_image(boot_image)
    layout.add_image(boot_image)
    assert store.indexer.list() == [boot_image.descriptor] * 2
    assert layer_contents(layout.image(boot_image.descriptor)) == [b"K", b"I", b"R"]


def test_push_with_digest(store, boot_image):
    digest = boot_image.descriptor.digest
    store.push(f"img@{digest}", boot_image)
    store.push(f"img:v1@{digest}", boot_image)
    assert names(store) == ["img", "img:v1"]
    assert store.resolve("img:v1").descriptor.digest == digest


def test_push_with_other_digest(store, boot_image):
    with pytest.raises(InvalidReferenceError):
        store.push(f"img:v1@sha256:{'a' * 64}", boot_image)
    assert store.list() == []


class CorruptLayer(BytesLayer):
    """Layer whose content does not match its descriptor"""

    def content(self):
        return io.BytesIO(b"X")


@pytest.fixture
def corrupt_image():
    return (
        ImageBuilder.from_json({}, media_type=ociboot.CONFIG_MEDIA_TYPE)
        .bytes_layer(b"K", media_type=ociboot.KERNEL_LAYER_MEDIA_TYPE)
        .layers(CorruptLayer(b"I"))
        .complete()
    )


@pytest.mark.parametrize(
    "store_image",
    [
        lambda store, image: store.put(image),
        lambda store, image: store.push("img:v2", image),
        lambda store, image: store.build(image, ref="img:v1"),
        lambda store, image: store.build(image),
    ],
    ids=["put", "push", "build", "build-unnamed"],
)
def test_failed_blob_write_leaves_index(store, boot_image, corrupt_image, store_image):
    store.push("img:v1", boot_image)
    before = store.indexer.list()
    with pytest.raises(StorageError, match="Digest mismatch"):
        store_image(store, corrupt_image)
    assert store.indexer.list() == before
    assert not store.layout.store.exists(corrupt_image.descriptor)


def test_unreadable_index(store, store_path):
    index_path = store_path / "index.json"
    index_path.unlink()
    index_path.mkdir()
    with pytest.raises(StorageError):
        store.list()
    with pytest.raises(StorageError):
        Store(store_path)
