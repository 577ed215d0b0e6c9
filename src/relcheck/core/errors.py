from __future__ import annotations


class RelCheckError(Exception):
    """Base class for every error raised by relcheck.

    Each subclass carries a stable machine-readable ``code`` which the HTTP
    surface puts into error documents and the client maps back to a class.
    """

    code: str = "internal_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class ValidationError(RelCheckError):
    """Malformed model, tuple key or query. Nothing is written."""

    code = "validation_error"


class NotFoundError(RelCheckError):
    code = "not_found"


class AlreadyExistsError(RelCheckError):
    code = "already_exists"


class CheckCancelledError(RelCheckError):
    code = "cancelled"


class EvaluationLimitError(RelCheckError):
    """Safety limit hit while resolving a check.

    These never escape :meth:`AuthorizationService.check`; they are attached
    to a denied :class:`CheckResult` as a diagnostic.
    """

    code = "evaluation_limit"


class CycleDetectedError(EvaluationLimitError):
    code = "cycle_detected"


class DepthExceededError(EvaluationLimitError):
    code = "depth_exceeded"


class DeadlineExceededError(EvaluationLimitError):
    code = "deadline_exceeded"


_BY_CODE: dict[str, type[RelCheckError]] = {
    cls.code: cls
    for cls in (
        ValidationError,
        NotFoundError,
        AlreadyExistsError,
        CheckCancelledError,
        CycleDetectedError,
        DepthExceededError,
        DeadlineExceededError,
    )
}


def error_from_code(code: str | None, message: str = "") -> RelCheckError | None:
    """Rebuild an error instance from its wire ``code``; None for unknown codes."""
    cls = _BY_CODE.get(code or "")
    if cls is None:
        return None
    return cls(message)


__all__ = [
    "RelCheckError",
    "ValidationError",
    "NotFoundError",
    "AlreadyExistsError",
    "CheckCancelledError",
    "EvaluationLimitError",
    "CycleDetectedError",
    "DepthExceededError",
    "DeadlineExceededError",
    "error_from_code",
]
