import logging
import re

from ociboot.errors import AmbiguousReferenceError, InvalidReferenceError, NotFoundError
from ociboot.oci import matcher
from ociboot.oci.descriptor import CANONICAL_ALGORITHM, Descriptor
from ociboot.oci.indexer import ReferenceIndex
from ociboot.oci.reference import parse_any_reference, parse_reference, reference_matcher

logger = logging.getLogger(__name__)

# Like the encoded part of a canonical digest, but at least 1 and at most 63
# characters. Full length digests are handled as references.
CANONICAL_DIGEST_PART_RE = re.compile(r"^[a-f0-9]{1,63}$")


def resolve_fuzzy(
    indexer: ReferenceIndex,
    value: str,
    media_type: str | None = None,
    strict: bool = False,
) -> Descriptor:
    """Resolve a reference, a digest or a digest prefix to an indexed descriptor

    `value` is tried as a strict reference, then as a loose reference (which
    also accepts plain digests), then as a prefix of the encoded sha256 digest.
    With `strict`, a prefix matching several distinct digests raises
    `AmbiguousReferenceError`, otherwise the first match in index order wins.
    """
    media_match = matcher.media_types(media_type) if media_type else matcher.every

    for parse in (parse_reference, parse_any_reference):
        try:
            ref = parse(value)
        except InvalidReferenceError:
            continue
        try:
            descriptor = indexer.find(matcher.and_(media_match, reference_matcher(ref)))
        except NotFoundError:
            continue
        logger.debug("Resolved %s as reference %s", value, ref)
        return descriptor

    if not CANONICAL_DIGEST_PART_RE.match(value):
        raise NotFoundError(f"No match for {value}")

    candidates = [
        d
        for d in indexer.list(media_match)
        if d.algorithm == CANONICAL_ALGORITHM and d.encoded.startswith(value)
    ]
    if not candidates:
        raise NotFoundError(f"No match for fuzzy reference {value}")
    if strict and len({d.digest for d in candidates}) > 1:
        raise AmbiguousReferenceError(
            f"Digest prefix {value} matches multiple images: "
            + ", ".join(sorted({d.digest for d in candidates}))
        )
    logger.debug("Resolved %s as digest prefix of %s", value, candidates[0].digest)
    return candidates[0]
