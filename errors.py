"""
errors.py — Error taxonomy for SendVault.

Every error carries a stable ``code`` and the HTTP status the API layer
answers with. Access rejections keep their precise reason internally even
where the boundary chooses to mask it (a revoked Send answers 404).
"""

import enum


class RejectionReason(str, enum.Enum):
    REVOKED = "SEND_REVOKED"
    EXPIRED = "SEND_EXPIRED"
    PASSWORD_INVALID = "SEND_PASSWORD_INVALID"
    LIMIT_EXCEEDED = "SEND_DOWNLOAD_LIMIT_EXCEEDED"
    NO_FILES_ATTACHED = "SEND_NO_FILES"


REJECTION_STATUS = {
    RejectionReason.REVOKED: 404,
    RejectionReason.EXPIRED: 410,
    RejectionReason.PASSWORD_INVALID: 403,
    RejectionReason.LIMIT_EXCEEDED: 410,
    RejectionReason.NO_FILES_ATTACHED: 404,
}

REJECTION_MESSAGES = {
    RejectionReason.REVOKED: "This send has been revoked.",
    RejectionReason.EXPIRED: "This send has expired.",
    RejectionReason.PASSWORD_INVALID: "A valid password is required for this send.",
    RejectionReason.LIMIT_EXCEEDED: "The download limit for this send has been reached.",
    RejectionReason.NO_FILES_ATTACHED: "No files attached to this send.",
}


class SendVaultError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str = None):
        super().__init__(message or self.code)
        self.message = message or self.code


class SendNotFound(SendVaultError):
    code = "SEND_NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Send not found"):
        super().__init__(message)


class FileNotFound(SendVaultError):
    code = "FILE_NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "File not found"):
        super().__init__(message)


class AccessDenied(SendVaultError):
    """A retrieval rejected by the access guard. Never retried."""

    def __init__(self, reason: RejectionReason):
        super().__init__(REJECTION_MESSAGES[reason])
        self.reason = reason
        self.code = reason.value
        self.status_code = REJECTION_STATUS[reason]


class StorageFailure(SendVaultError):
    code = "STORAGE_ERROR"
    status_code = 500


class ArchiveAborted(StorageFailure):
    """Raised to the consumer of an archive stream whose producer failed."""

    code = "ARCHIVE_ABORTED"


class TransientConflict(SendVaultError):
    code = "TRANSIENT_CONFLICT"
    status_code = 503

    def __init__(self, message: str = "Concurrent update conflict, please retry"):
        super().__init__(message)


class InvalidSendRequest(SendVaultError):
    code = "VALIDATION_ERROR"
    status_code = 400


class PermissionDenied(SendVaultError):
    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class NotAuthenticated(SendVaultError):
    code = "UNAUTHORIZED"
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)
