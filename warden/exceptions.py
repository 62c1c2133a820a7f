class WardenException(Exception):
    """Base class for all warden errors."""


class ObjectNotFound(WardenException):
    """Raised by an object store when the requested object does not exist."""


class ImageValidationError(WardenException):
    """Base class for image trust validation failures."""

    default_message = "image validation failed"

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)


class MalformedReference(ImageValidationError):
    default_message = "image name is not formatted correctly"


class EmptyArguments(ImageValidationError):
    default_message = "empty arguments provided"


class RepoClientError(ImageValidationError):
    default_message = "unable to create notary repository client"


class NoTrustData(ImageValidationError):
    default_message = "no trust data"


class MissingHash(ImageValidationError):
    default_message = "image hash is missing"


class AmbiguousHash(ImageValidationError):
    default_message = "more than one hash for image"


class RefParseError(ImageValidationError):
    default_message = "ref parse: invalid reference"


class RegistryFetchError(ImageValidationError):
    default_message = "get image: failed to fetch manifest"


class ChecksumDecodeError(ImageValidationError):
    default_message = "checksum error: invalid digest"


class HashMismatch(ImageValidationError):
    default_message = "unexpected image hash value"


class DeadlineExceeded(ImageValidationError):
    default_message = "context deadline exceeded"


class ReconcileError(WardenException):
    """Base class for webhook configuration reconcile failures."""


class ClusterFetchError(ReconcileError):
    pass


class ClusterCreateError(ReconcileError):
    pass


class ClusterUpdateError(ReconcileError):
    pass
