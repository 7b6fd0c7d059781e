from __future__ import annotations


class ErrorKind:
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    REMOTE = "remote"
    PERSISTENCE = "persistence"


class DocketError(Exception):
    kind = "error"


class ValidationError(DocketError):
    kind = ErrorKind.VALIDATION

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid request")


class NotFoundError(DocketError):
    kind = ErrorKind.NOT_FOUND


class PermissionDenied(DocketError):
    kind = ErrorKind.PERMISSION_DENIED


class RemoteAdapterError(DocketError):
    kind = ErrorKind.REMOTE


class PersistenceError(DocketError):
    kind = ErrorKind.PERSISTENCE
