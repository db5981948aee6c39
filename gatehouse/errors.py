# gatehouse/errors.py
"""
Typed failures raised by the visit engine.
Each carries a stable machine-readable code, a human-readable message and the
HTTP status the API layer answers with.
"""


class EngineError(Exception):
    code = "ENGINE_ERROR"
    status = 500

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"ok": False, "code": self.code, "error": self.message}


class ValidationError(EngineError):
    code = "VALIDATION_ERROR"
    status = 400


class NotFound(EngineError):
    code = "NOT_FOUND"
    status = 404


class InvalidTransition(EngineError):
    code = "INVALID_TRANSITION"
    status = 412


class HeadcountMismatch(InvalidTransition):
    code = "HEADCOUNT_MISMATCH"


class PermissionDenied(InvalidTransition):
    """The caller's guard role may not perform this action."""
    code = "UNAUTHORIZED_GUARD_TYPE"
    status = 403


class CapacityExceeded(EngineError):
    code = "CAPACITY_EXCEEDED"
    status = 409


class TokenConflict(EngineError):
    code = "CARD_ALREADY_IN_USE"
    status = 409


class AlreadyCompleted(EngineError):
    code = "ALREADY_COMPLETED"
    status = 409


class StorageError(EngineError):
    code = "DATABASE_ERROR"
    status = 500
