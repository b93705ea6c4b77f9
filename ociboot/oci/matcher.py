"""Predicates over descriptors, used to select entries of an index."""
from typing import Callable

from ociboot.oci.descriptor import ANNOTATION_REF_NAME, Descriptor

Matcher = Callable[[Descriptor], bool]


def every(descriptor: Descriptor) -> bool:
    return True


def none(descriptor: Descriptor) -> bool:
    return False


def and_(*matchers: Matcher) -> Matcher:
    """Match if all `matchers` match, `and_()` matches everything"""

    def match(descriptor: Descriptor) -> bool:
        return all(m(descriptor) for m in matchers)

    return match


def or_(*matchers: Matcher) -> Matcher:
    """Match if any of `matchers` match, `or_()` matches nothing"""

    def match(descriptor: Descriptor) -> bool:
        return any(m(descriptor) for m in matchers)

    return match


def equal(to: Descriptor) -> Matcher:
    def match(descriptor: Descriptor) -> bool:
        return descriptor == to

    return match


def annotation(key: str, value: str) -> Matcher:
    def match(descriptor: Descriptor) -> bool:
        return (
            descriptor.annotations is not None
            and key in descriptor.annotations
            and descriptor.annotations[key] == value
        )

    return match


def media_types(*types: str) -> Matcher:
    allowed = frozenset(types)

    def match(descriptor: Descriptor) -> bool:
        return descriptor.mediaType in allowed

    return match


def digests(*values: str) -> Matcher:
    allowed = frozenset(values)

    def match(descriptor: Descriptor) -> bool:
        return descriptor.digest in allowed

    return match


def name(ref_name: str) -> Matcher:
    return annotation(ANNOTATION_REF_NAME, ref_name)


def unnamed(descriptor: Descriptor) -> bool:
    return descriptor.ref_name is None


def encoded_digest_prefix(prefix: str) -> Matcher:
    """Match on the encoded part of the digest, regardless of its algorithm"""

    def match(descriptor: Descriptor) -> bool:
        return descriptor.encoded.startswith(prefix)

    return match
