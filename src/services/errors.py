"""Domain error taxonomy for the SOS workflow.

Every error carries the HTTP status the API layer should answer with and
an optional ``data`` payload that is surfaced to the caller verbatim
(e.g. the id and expiry of an already-pending request).  Delivery errors
are raised by the email service and caught at the fan-out boundary; they
never reach an HTTP response on their own.
"""

from __future__ import annotations

from typing import Any, ClassVar


class SafelineError(Exception):
    """Base class for all expected, caller-visible failures."""

    status_code: ClassVar[int] = 400
    code: ClassVar[str] = "error"

    def __init__(self, message: str, *, data: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data


# -- Validation (400) ---------------------------------------------------------


class ValidationError(SafelineError):
    code = "validation_error"


class InvalidEmailFormatError(ValidationError):
    code = "invalid_format"


class DuplicateContactError(ValidationError):
    code = "duplicate"


class ContactNotFoundError(ValidationError):
    """Contact absent from the list; the contacts API answers 400 for it."""

    code = "contact_not_found"


class NoContactsConfiguredError(ValidationError):
    code = "no_contacts_configured"


# -- Not found (404) ----------------------------------------------------------


class NotFoundError(SafelineError):
    status_code = 404
    code = "not_found"


class UserNotFoundError(NotFoundError):
    def __init__(self, email: str) -> None:
        super().__init__("User not found")
        self.email = email


class RequestNotFoundError(NotFoundError):
    def __init__(self, request_id: str) -> None:
        super().__init__("Location request not found")
        self.request_id = request_id


class NotificationNotFoundError(NotFoundError):
    def __init__(self, notification_id: str) -> None:
        super().__init__("Notification not found")
        self.notification_id = notification_id


# -- Authorization (403) ------------------------------------------------------


class AuthorizationError(SafelineError):
    status_code = 403
    code = "unauthorized"


class UnauthorizedRequesterError(AuthorizationError):
    def __init__(self) -> None:
        super().__init__(
            "Only emergency contacts can request location. "
            "You are not listed as an emergency contact for this user."
        )


class RequesterNoLongerAuthorizedError(AuthorizationError):
    code = "requester_no_longer_authorized"

    def __init__(self, request_id: str) -> None:
        super().__init__(
            "Cannot share location. Requester is no longer listed as an emergency contact.",
            data={"requestId": request_id, "status": "DENIED"},
        )


# -- State conflict (400) -----------------------------------------------------


class StateConflictError(SafelineError):
    code = "state_conflict"


class RequestAlreadyPendingError(StateConflictError):
    code = "request_already_pending"

    def __init__(self, request_id: str, expires_at: str) -> None:
        super().__init__(
            "Location request already pending",
            data={"requestId": request_id, "expiresAt": expires_at},
        )
        self.request_id = request_id


class RequestAlreadyResolvedError(StateConflictError):
    code = "already_resolved"

    def __init__(self, request_id: str, status: str) -> None:
        super().__init__(
            f"Request already {status.lower()}",
            data={"requestId": request_id, "status": status},
        )
        self.request_id = request_id
        self.status = status


# -- Delivery -----------------------------------------------------------------


class EmailDeliveryError(SafelineError):
    """An email could not be delivered after all retry attempts."""

    status_code = 502
    code = "delivery_failed"


# -- Storage ------------------------------------------------------------------


class DuplicateKeyError(Exception):
    """A unique index rejected an insert or update."""
