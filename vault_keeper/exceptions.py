"""Error kinds crossing the public boundary.

Every exception carries the ``kind`` reported on the wire. The RPC layer
maps kinds to status codes; messages and chained causes stay in the logs.
"""


class KeeperError(Exception):
    """Base class for all vault errors."""

    kind = "internal"


class StorageError(KeeperError):
    """A database operation failed for a non-semantic reason."""


class UserAlreadyExists(KeeperError):
    kind = "user_already_exists"


class UserNotFound(KeeperError):
    kind = "user_not_found"


class InvalidCredentials(KeeperError):
    kind = "invalid_credentials"


class Unauthenticated(KeeperError):
    kind = "unauthenticated"


class ValidationFailed(KeeperError):
    kind = "validation_failed"


class FramingError(ValidationFailed):
    """A stream frame is truncated, oversized or out of order."""


class DeadlineExceeded(KeeperError):
    kind = "deadline_exceeded"


class RecordNotFound(KeeperError):
    """Record is absent or owned by somebody else.

    The two cases are indistinguishable to the caller.
    """

    kind = "record_not_found"


class PasswordNotFound(RecordNotFound):
    kind = "password_not_found"


class BankNotFound(RecordNotFound):
    kind = "bank_not_found"


class TextNotFound(RecordNotFound):
    kind = "text_not_found"


class FileNotFound(RecordNotFound):
    kind = "file_not_found"


class DecryptionFailed(KeeperError):
    """A sealed value could not be authenticated with the client key."""

    kind = "decryption_failed"
