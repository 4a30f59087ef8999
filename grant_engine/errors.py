"""
Error taxonomy for the grant engine.

Every error carries the precise kind internally. ``public_detail`` and
``status_code`` are what the HTTP layer shows, and those deliberately collapse
``Forbidden`` into the same answer as ``NotFound`` so callers cannot discover
which grant ids or records exist.
"""


class GrantError(Exception):
    status_code = 400
    public_detail = "Request could not be processed."

    def __init__(self, message: str = ""):
        super().__init__(message or self.public_detail)
        self.message = message or self.public_detail


class NotFound(GrantError):
    status_code = 404
    public_detail = "Not found."


class Forbidden(GrantError):
    # Same outward shape as NotFound.
    status_code = 404
    public_detail = "Not found."


class AlreadyRevoked(GrantError):
    status_code = 409
    public_detail = "Grant is not active."


class InvalidDuration(GrantError):
    status_code = 422
    public_detail = "durationHours must be a positive number of hours."


class InvalidAccessLevel(GrantError):
    status_code = 422
    public_detail = "accessLevel must be one of READ, WRITE, FULL_ACCESS."


class InvalidGrant(GrantError):
    status_code = 422
    public_detail = "Grant request is invalid."


class NotificationFailure(GrantError):
    """Raised by notifiers. Never escapes a grant, revoke or sweep."""

    status_code = 502
    public_detail = "Notification could not be delivered."


class StoreUnavailable(GrantError):
    status_code = 503
    public_detail = "Grant store is unavailable."
