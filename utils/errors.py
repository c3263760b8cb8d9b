"""Error taxonomy shared by the case lifecycle components and the HTTP layer."""


class CaseEngineError(Exception):
    """Base class; ``status_code`` is the HTTP status the API maps it to."""

    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class Unauthorized(CaseEngineError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(CaseEngineError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(CaseEngineError):
    status_code = 404
    default_message = "Not found"


class ValidationFailed(CaseEngineError):
    default_message = "Invalid request"


class InvalidStatus(CaseEngineError):
    default_message = "Invalid status provided."


class InvalidRequestId(CaseEngineError):
    default_message = "Invalid requestId"


class NoPendingRequest(CaseEngineError):
    default_message = "No pending info request found"


class RecipientUnresolved(CaseEngineError):
    default_message = "Could not resolve a recipient for this case"


class TransportFailure(CaseEngineError):
    """Mail, push or storage delivery failed."""

    status_code = 502
    default_message = "Upstream delivery failed"


class ConfigurationError(CaseEngineError):
    status_code = 500
    default_message = "Service is not configured"
