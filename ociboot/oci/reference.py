"""Image reference parsing

Follows the grammar of the docker distribution reference package:

    reference := name [ ":" tag ] [ "@" digest ]
    name      := [domain "/"] path-component ["/" path-component]*

ref: https://github.com/distribution/reference/blob/main/reference.go
"""
import re
from dataclasses import dataclass

from ociboot.errors import InvalidReferenceError
from ociboot.oci import matcher
from ociboot.oci.descriptor import (
    ANNOTATION_REF_NAME,
    ANNOTATION_TAG,
    CANONICAL_ALGORITHM,
    Descriptor,
)

NAME_TOTAL_LENGTH_MAX = 255

_ALPHANUMERIC = r"[a-z0-9]+"
_SEPARATOR = r"(?:[._]|__|[-]+)"
_PATH_COMPONENT = rf"{_ALPHANUMERIC}(?:{_SEPARATOR}{_ALPHANUMERIC})*"
_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN = rf"{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*(?::[0-9]+)?"
_NAME = rf"(?:{_DOMAIN}/)?{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*"
_TAG = r"[\w][\w.-]{0,127}"
_DIGEST = r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}"

# ASCII only, `\w` in the distribution grammar does not cover unicode letters
REFERENCE_RE = re.compile(
    rf"^(?P<name>{_NAME})(?::(?P<tag>{_TAG}))?(?:@(?P<digest>{_DIGEST}))?$",
    re.ASCII,
)
DIGEST_RE = re.compile(rf"^{_DIGEST}$", re.ASCII)
IDENTIFIER_RE = re.compile(r"^[a-f0-9]{64}$")

# Length of the encoded part for the supported digest algorithms
DIGEST_LENGTHS = {"sha256": 64, "sha384": 96, "sha512": 128}


def validate_digest(value: str) -> str:
    """Validate an algorithm-qualified digest"""
    if not DIGEST_RE.match(value):
        raise InvalidReferenceError(f"Invalid digest format: {value!r}")
    algorithm, encoded = value.split(":", 1)
    if algorithm not in DIGEST_LENGTHS:
        raise InvalidReferenceError(f"Unsupported digest algorithm: {algorithm!r}")
    if len(encoded) != DIGEST_LENGTHS[algorithm] or encoded != encoded.lower():
        raise InvalidReferenceError(f"Invalid {algorithm} digest: {value!r}")
    return value


@dataclass(frozen=True, slots=True)
class Reference:
    """A parsed reference, at least one of `name` and `digest` is set"""

    name: str | None = None
    tag: str | None = None
    digest: str | None = None

    def __str__(self):
        if self.name is None:
            return self.digest or ""
        result = self.ref_name
        if self.digest:
            result = f"{result}@{self.digest}"
        return result

    @property
    def ref_name(self) -> str | None:
        """The name as stored in the reference name annotation, `name[:tag]`"""
        if self.name is None:
            return None
        if self.tag:
            return f"{self.name}:{self.tag}"
        return self.name

    @property
    def domain(self) -> str | None:
        if self.name is None or "/" not in self.name:
            return None
        first, _ = self.name.split("/", 1)
        if "." in first or ":" in first or first == "localhost":
            return first
        return None

    @property
    def path(self) -> str | None:
        if self.name is None:
            return None
        domain = self.domain
        if domain is None:
            return self.name
        return self.name[len(domain) + 1 :]


def parse_reference(value: str) -> Reference:
    """Strictly parse `name[:tag][@digest]`"""
    if not value:
        raise InvalidReferenceError("Repository name must have at least one component")
    match = REFERENCE_RE.match(value)
    if match is None:
        if REFERENCE_RE.match(value.lower()):
            raise InvalidReferenceError(
                f"Repository name must be lowercase: {value!r}"
            )
        raise InvalidReferenceError(f"Invalid reference format: {value!r}")
    if len(match["name"]) > NAME_TOTAL_LENGTH_MAX:
        raise InvalidReferenceError(
            f"Repository name must not be more than {NAME_TOTAL_LENGTH_MAX} characters"
        )
    digest = match["digest"]
    if digest is not None:
        validate_digest(digest)
    return Reference(name=match["name"], tag=match["tag"], digest=digest)


def parse_named(value: str) -> Reference:
    """Parse a reference that has to carry a name"""
    if IDENTIFIER_RE.match(value):
        raise InvalidReferenceError(
            f"Invalid repository name ({value}), "
            "cannot specify 64-byte hexadecimal strings"
        )
    return parse_reference(value)


def parse_any_reference(value: str) -> Reference:
    """Loosely parse a reference

    Accepts everything `parse_named` does, plus plain digests
    (`<algorithm>:<encoded>`) and bare 64 character hex identifiers.
    """
    if IDENTIFIER_RE.match(value):
        return Reference(digest=f"{CANONICAL_ALGORITHM}:{value}")
    if DIGEST_RE.match(value):
        try:
            return Reference(digest=validate_digest(value))
        except InvalidReferenceError:
            # Could still be a name with a long hex tag
            pass
    return parse_named(value)


def reference_matcher(ref: Reference) -> matcher.Matcher:
    """Matcher selecting descriptors addressed by `ref`

    Digest references match on digest, named references on the reference
    name annotation (`name:tag` for tagged references), both when both are present.
    """
    matchers = []
    if ref.digest is not None:
        matchers.append(matcher.digests(ref.digest))
    if ref.name is not None:
        matchers.append(matcher.name(ref.ref_name))
    if not matchers:
        raise InvalidReferenceError(f"Could not construct matchers from ref {ref}")
    return matcher.and_(*matchers)


def descriptor_with_reference(descriptor: Descriptor, ref: Reference) -> Descriptor:
    """Copy of `descriptor` annotated with the name and tag of `ref`"""
    if ref.name is None:
        raise InvalidReferenceError(f"Reference {ref} has no name")
    annotations = {
        k: v
        for k, v in (descriptor.annotations or {}).items()
        if k not in (ANNOTATION_REF_NAME, ANNOTATION_TAG)
    }
    annotations[ANNOTATION_REF_NAME] = ref.ref_name
    if ref.tag:
        annotations[ANNOTATION_TAG] = ref.tag
    return descriptor.model_copy(deep=True, update={"annotations": annotations})


def descriptor_without_reference(descriptor: Descriptor) -> Descriptor:
    """Copy of `descriptor` without name and tag annotations"""
    annotations = {
        k: v
        for k, v in (descriptor.annotations or {}).items()
        if k not in (ANNOTATION_REF_NAME, ANNOTATION_TAG)
    }
    return descriptor.model_copy(
        deep=True, update={"annotations": annotations or None}
    )
