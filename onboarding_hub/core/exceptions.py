"""
Hub-wide exception hierarchy.

Services raise these types; the application factory registers one JSON
handler per type so every blueprint gets the same HTTP status codes.

    ValidationError        400  malformed or missing input, never retried
    AuthenticationError    401  no session
    SessionIntegrityError  401  corrupted / expired session, cookie cleared
    AuthorizationError     403  valid session, insufficient role or ownership
    NotFoundError          404  partner / submission / template id absent
    ConflictError          409  template version race, retryable
    StorageError           500  persistence failure after exhausting retries
    MalformedCriteriaError 500  programming error in rule criteria

Usage:
    from onboarding_hub.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Partner", resource_id="partner-123")
    raise ValidationError("partnerName is required", details={"partnerName": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested record does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Partner", "Template").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | int | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" {resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when caller input is malformed or violates a business rule.

    Args:
        message: Human-readable explanation, suitable for direct display.
        details: Optional field-level breakdown. Keys are field names;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AuthenticationError(Exception):
    """Raised when a protected operation has no authenticated caller."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class SessionIntegrityError(AuthenticationError):
    """Raised when the client-held session token cannot be trusted.

    ``reason`` is ``"expired"`` or ``"corrupted"``. The HTTP layer clears the
    session cookie and asks the client to re-authenticate.
    """

    EXPIRED = "expired"
    CORRUPTED = "corrupted"

    _MESSAGES = {
        EXPIRED: "Your session has expired. Please log in again.",
        CORRUPTED: "Your session is invalid. Please log in again.",
    }

    def __init__(self, reason: str) -> None:
        if reason not in self._MESSAGES:
            reason = self.CORRUPTED
        self.reason = reason
        super().__init__(self._MESSAGES[reason])


class AuthorizationError(Exception):
    """Raised when an authenticated user may not perform an action.

    Args:
        message: Reason shown to the caller.
        action: Optional action name (view, edit, submit, delete, ...), for logs.
    """

    def __init__(self, message: str = "Insufficient permissions", action: str | None = None) -> None:
        self.action = action
        super().__init__(message)


class ConflictError(Exception):
    """Raised when a write lost a race against a concurrent writer.

    Always retryable: the caller should re-read the record and re-apply.

    Args:
        resource: Entity name.
        message: Human-readable explanation.
        current_version: The version the store holds now, when known.
    """

    retryable = True

    def __init__(self, resource: str, message: str, current_version: int | None = None) -> None:
        self.resource = resource
        self.current_version = current_version
        super().__init__(message)


class StorageError(Exception):
    """Raised when the persistence layer keeps failing after all retries.

    The message returned to clients is generic; the operation context
    (operation, namespace, key) is only written to the server log.
    """

    def __init__(self, operation: str, namespace: str, key: str | None = None, attempts: int = 0) -> None:
        self.operation = operation
        self.namespace = namespace
        self.key = key
        self.attempts = attempts
        super().__init__(
            f"Storage operation {operation} failed for {namespace}/{key or '*'} after {attempts} attempt(s)"
        )


class KeyExistsError(Exception):
    """Raised by insert-only writes when the key is already taken. Never retried."""

    def __init__(self, namespace: str, key: str) -> None:
        self.namespace = namespace
        self.key = key
        super().__init__(f"{namespace}/{key} already exists")


class MalformedCriteriaError(ValueError):
    """Raised when pass/fail criteria do not have the canonical rule shape."""
