"""Local image store

Images are stored by content first (`put`) and named second (`tag`). Every name
maps to exactly one index entry, annotated with the name.
"""
import logging
from pathlib import Path

from ociboot.errors import InvalidReferenceError, NotFoundError
from ociboot.oci import matcher
from ociboot.oci.descriptor import (
    MEDIA_TYPE_IMAGE_MANIFEST,
    Descriptor,
    plain,
    with_name,
)
from ociboot.oci.image import Image, open_image, with_descriptor
from ociboot.oci.indexer import IndexStorage, ReferenceIndex
from ociboot.oci.layout import Layout
from ociboot.oci.reference import (
    Reference,
    descriptor_with_reference,
    descriptor_without_reference,
    parse_any_reference,
    parse_named,
    reference_matcher,
)
from ociboot.oci.resolve import resolve_fuzzy

logger = logging.getLogger(__name__)


def _parse_tag(ref: str) -> Reference:
    named = parse_named(ref)
    if named.digest is not None:
        raise InvalidReferenceError(f"Name {ref} must not contain a digest")
    return named


class Store:
    def __init__(self, path: Path, index_storage: IndexStorage | None = None):
        self.layout = Layout(path, index_storage=index_storage)

    def __repr__(self):
        return f"Store({str(self.layout.path)!r})"

    @property
    def indexer(self) -> ReferenceIndex:
        return self.layout.indexer

    def put(self, image: Image):
        """Store `image` by content only

        Replaces the unnamed entry for the same content, names pointing to the
        image are left untouched.
        """
        descriptor = descriptor_without_reference(image.descriptor)
        match = matcher.and_(
            matcher.media_types(descriptor.mediaType),
            matcher.digests(descriptor.digest),
            matcher.unnamed,
        )
        self.layout.replace_image(with_descriptor(image, descriptor), match)

    def push(self, ref: str, image: Image):
        """Store `image` and name it `ref`

        `ref` may carry a digest (`name[:tag]@digest`), it has to be the digest
        of `image` and the image is named `name[:tag]`.
        """
        named = parse_named(ref)
        if named.digest is not None and named.digest != image.descriptor.digest:
            raise InvalidReferenceError(
                f"Reference {ref} does not match image {image.descriptor.digest}"
            )
        self.put(image)
        self.tag(image.descriptor.digest, named.ref_name)
        logger.info("Stored %s as %s", image.descriptor.digest, named.ref_name)

    def build(self, image: Image, ref: str | None = None):
        """Store a freshly built image, optionally under `ref`

        A rebuild under the same name supersedes the previous build in place,
        unnamed builds only supersede an unnamed entry for the same content.
        """
        if ref is None:
            descriptor = descriptor_without_reference(image.descriptor)
        else:
            descriptor = descriptor_with_reference(image.descriptor, _parse_tag(ref))
        self.layout.index_image(with_descriptor(image, descriptor))

    def resolve_descriptor(self, ref: str) -> Descriptor:
        match = reference_matcher(parse_any_reference(ref))
        try:
            return self.indexer.find(match)
        except NotFoundError:
            raise NotFoundError(f"No image found for ref {ref}") from None

    def resolve(self, ref: str) -> Image:
        """Open the image `ref` (a name, `name:tag` or digest) points to"""
        return open_image(self.resolve_descriptor(ref), self.layout.store)

    def fuzzy_resolve(
        self, value: str, media_type: str | None = None, strict: bool = False
    ) -> Descriptor:
        """Resolve a reference, digest or digest prefix, see `resolve_fuzzy`"""
        return resolve_fuzzy(self.indexer, value, media_type=media_type, strict=strict)

    def tag(self, src_ref: str, dst_ref: str):
        """Name the image `src_ref` points to `dst_ref`

        `dst_ref` is moved if it already names another image.
        """
        try:
            dst = _parse_tag(dst_ref)
        except InvalidReferenceError as e:
            raise InvalidReferenceError(
                f"Destination has to be a named reference: {e}"
            ) from e
        src = self.resolve_descriptor(src_ref)
        descriptor = with_name(plain(src), dst.ref_name)
        self.indexer.replace(descriptor, matcher.name(dst.ref_name))
        logger.info("Tagged %s as %s", src.digest, dst.ref_name)

    def untag(self, ref: str) -> int:
        """Remove the name `ref`, the image itself stays in the store"""
        named = _parse_tag(ref)
        removed = self.indexer.delete(matcher.name(named.ref_name))
        logger.info("Untagged %s", ref)
        return removed

    def delete(self, ref: str) -> int:
        """Remove every index entry `ref` addresses

        Blobs are not removed.
        """
        removed = self.indexer.delete(reference_matcher(parse_any_reference(ref)))
        logger.info("Deleted %d entries for %s", removed, ref)
        return removed

    def list(
        self, media_types: tuple[str, ...] = (MEDIA_TYPE_IMAGE_MANIFEST,)
    ) -> list[Descriptor]:
        return self.indexer.list(matcher.media_types(*media_types))
