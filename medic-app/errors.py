# medic-app/errors.py
"""Error taxonomy shared by the registries, the record ledger and the gateway."""

from enum import Enum


class ErrorKind(str, Enum):
    UNAUTHORIZED = "Unauthorized"
    NOT_FOUND = "NotFound"
    ALREADY_EXISTS = "AlreadyExists"
    ALREADY_INITIALIZED = "AlreadyInitialized"
    UPLOAD_FAILED = "UploadFailed"
    INVALID = "Invalid"
    LEDGER_REJECTED = "LedgerRejected"


class AccessError(Exception):
    """Base class for every failure the gateway reports back to its caller."""

    kind = None

    def __init__(self, message=None):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value

    def to_dict(self):
        return {"error": self.kind.value, "message": self.message}


class Unauthorized(AccessError):
    kind = ErrorKind.UNAUTHORIZED


class NotFound(AccessError):
    kind = ErrorKind.NOT_FOUND


class AlreadyExists(AccessError):
    kind = ErrorKind.ALREADY_EXISTS


class AlreadyInitialized(AccessError):
    kind = ErrorKind.ALREADY_INITIALIZED


class Invalid(AccessError):
    kind = ErrorKind.INVALID


class LedgerRejected(AccessError):
    kind = ErrorKind.LEDGER_REJECTED


class UploadFailed(AccessError):
    """The pinning gateway rejected the upload or could not be reached."""

    kind = ErrorKind.UPLOAD_FAILED

    def __init__(self, message=None, status_code=None, reason=None):
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason

    def to_dict(self):
        data = super().to_dict()
        if self.status_code is not None:
            data["status"] = self.status_code
        if self.reason:
            data["reason"] = self.reason
        return data
