from enum import Enum


class ErrorKind(str, Enum):
    validation = "validation"
    unauthenticated = "unauthenticated"
    forbidden = "forbidden"
    not_found = "not_found"
    conflict = "conflict"
    insufficient_funds = "insufficient_funds"
    misconfigured = "misconfigured"
    upstream = "upstream"
    internal = "internal"


class FinanceError(ValueError):
    """Base error for everything the API reports as ``{kind, message}``."""

    kind = ErrorKind.internal
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "message": self.message}


class ValidationFailed(FinanceError):
    kind = ErrorKind.validation
    status_code = 400


class NotAuthenticated(FinanceError):
    kind = ErrorKind.unauthenticated
    status_code = 401


class PermissionDenied(FinanceError):
    kind = ErrorKind.forbidden
    status_code = 403


class NotFound(FinanceError):
    kind = ErrorKind.not_found
    status_code = 404


class Conflict(FinanceError):
    kind = ErrorKind.conflict
    status_code = 409


class InsufficientFunds(Conflict):
    kind = ErrorKind.insufficient_funds


class ServerMisconfigured(FinanceError):
    kind = ErrorKind.misconfigured
    status_code = 500


class EmailDeliveryError(RuntimeError):
    pass


class AssistantError(FinanceError):
    kind = ErrorKind.upstream
    status_code = 502
