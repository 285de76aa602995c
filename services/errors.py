"""Error taxonomy shared by the policy engine, coordinators and API layer.

Every error carries a stable machine-readable ``kind`` plus a human-readable
message. The API layer maps kinds to HTTP status codes; nothing below the
coordinators is allowed to leak raw persistence or filesystem errors.
"""


class ServiceError(Exception):
    """Base error for coordinator-level failures."""

    kind = "service_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationError(ServiceError):
    """Field-level validation failure detected before any mutation."""

    kind = "validation_error"

    def __init__(self, errors: list[dict] | str, field: str | None = None):
        if isinstance(errors, str):
            errors = [{"field": field, "message": errors}]
        self.errors = errors
        super().__init__("; ".join(e["message"] for e in errors) or "Validation failed")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "errors": self.errors}


class TooManyFilesError(ValidationError):
    kind = "too_many_files"


class FileTooLargeError(ValidationError):
    kind = "file_too_large"


class UnsupportedTypeError(ValidationError):
    kind = "unsupported_type"


class NotFoundError(ServiceError):
    """Resource absent, or excluded by the caller's access scope."""

    kind = "not_found"


class ClientNotFoundError(NotFoundError):
    pass


class ManagerNotFoundError(NotFoundError):
    pass


class UserNotFoundError(NotFoundError):
    pass


class DocumentNotFoundError(NotFoundError):
    pass


class AccessDeniedError(ServiceError):
    """Authenticated, but role or ownership is insufficient."""

    kind = "access_denied"


class DuplicateKeyError(ServiceError):
    kind = "duplicate_key"


class UpstreamUnavailableError(ServiceError):
    kind = "upstream_unavailable"


class OperationTimeoutError(ServiceError):
    kind = "timeout"


class InvalidCredentialsError(ServiceError):
    kind = "invalid_credentials"
