class OCIBootError(Exception):
    """Base class for all ociboot errors."""


class NotFoundError(OCIBootError, LookupError):
    """Raised when no index entry matches a query or reference."""


class AmbiguousReferenceError(OCIBootError):
    """Raised when a digest prefix matches more than one image."""


class InvalidReferenceError(OCIBootError, ValueError):
    """Raised when a reference string is malformed."""


class DecodeError(OCIBootError):
    """Raised when an index, manifest or config cannot be decoded."""


class EncodeError(OCIBootError):
    """Raised when a value cannot be serialized."""


class StorageError(OCIBootError, OSError):
    """Raised when the filesystem or the blob store fails."""


class IncompleteImageError(OCIBootError):
    """Raised when an image does not satisfy the boot image contract."""


class UnsupportedMediaTypeError(OCIBootError):
    """Raised when a descriptor has a media type outside the recognized set."""


class AuthenticationError(OCIBootError):
    """Raised when authentication fails."""
