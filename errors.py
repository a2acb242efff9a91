"""Error taxonomy shared by repositories and the HTTP layer."""
from typing import Any, Dict, List, Optional


class ServiceError(Exception):
    """Base class for errors rendered as ``{"success": false, ...}`` responses."""

    status_code = 500
    error = "Internal Server Error"
    # 5xx errors never expose their message to the caller
    public = False

    def __init__(self, message: Optional[str] = None, **details: Any):
        super().__init__(message or self.error)
        self.message = message or self.error
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "error": self.error}
        if self.public:
            body["message"] = self.message
            body.update(self.details)
        else:
            body["message"] = "An unexpected error occurred"
        return body


class ValidationError(ServiceError):
    """Missing or invalid request fields."""

    status_code = 400
    error = "Validation Error"
    public = True

    def __init__(
        self,
        message: Optional[str] = None,
        required: Optional[List[str]] = None,
        messages: Optional[List[str]] = None,
        **details: Any
    ):
        if required:
            details["required"] = required
        if messages:
            details["messages"] = messages
        super().__init__(message, **details)


class InsufficientStockError(ValidationError):
    """A line item asks for more than the product has in stock."""

    error = "Insufficient Stock"


class NotFoundError(ServiceError):
    """The identifier does not resolve in the active backend."""

    status_code = 404
    error = "Not Found"
    public = True


class AuthError(ServiceError):
    """Admin credential check failed."""

    status_code = 401
    error = "Unauthorized"
    public = True


class BackendUnavailableError(ServiceError):
    """The durable store failed during a call."""

    error = "Database Error"


class InternalError(ServiceError):
    """Unexpected fault."""
