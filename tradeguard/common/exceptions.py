import enum


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    INVALID_STATE = "invalid_state"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    EXTERNAL = "external"


class DisputeEngineError(Exception):
    """Typed failure returned to callers of the dispute engine.

    Callers that don't want to match on the subclass can branch on ``kind``.
    """

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, detail: str, kind: ErrorKind | None = None):
        super().__init__(detail)
        self.detail = detail
        if kind is not None:
            self.kind = kind

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, detail={self.detail!r})"


class NotFoundError(DisputeEngineError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str, resource_id: object | None = None):
        detail = f"{resource} not found"
        if resource_id is not None:
            detail = f"{resource} '{resource_id}' not found"
        super().__init__(detail)


class PermissionDeniedError(DisputeEngineError):
    kind = ErrorKind.PERMISSION_DENIED

    def __init__(self, detail: str = "You do not have permission to perform this action"):
        super().__init__(detail)


class InvalidStateError(DisputeEngineError):
    kind = ErrorKind.INVALID_STATE


class ConflictError(DisputeEngineError):
    kind = ErrorKind.CONFLICT


class ValidationError(DisputeEngineError):
    kind = ErrorKind.VALIDATION


class ExternalServiceError(DisputeEngineError):
    kind = ErrorKind.EXTERNAL

    def __init__(self, service: str, detail: str | None = None):
        msg = f"External service error: {service}"
        if detail:
            msg += f" - {detail}"
        super().__init__(msg)
