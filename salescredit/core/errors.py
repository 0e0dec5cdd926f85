class CreditServiceError(Exception):
    """Base class for errors returned to API callers."""

    status_code = 500
    kind = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CreditServiceError):
    status_code = 422
    kind = "validation_error"


class AuthorizationError(CreditServiceError):
    status_code = 403
    kind = "authorization_error"


class NotFoundError(CreditServiceError):
    status_code = 404
    kind = "not_found"


class ConflictError(CreditServiceError):
    status_code = 409
    kind = "conflict"


class ExternalServiceError(CreditServiceError):
    """Extraction provider failure. Absorbed by the extraction adapter."""

    status_code = 502
    kind = "external_service_error"


class PersistenceError(CreditServiceError):
    status_code = 503
    kind = "persistence_error"
