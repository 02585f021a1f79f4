# campus_helpdesk/backend/app/errors.py
"""
Errors raised by the ticket command layer.

Missing routing configuration is not an error (the resolver falls back to
the unassigned sentinel). Everything here aborts the command and leaves
the ticket untouched.
"""


class TicketCommandError(Exception):
    code = "command_rejected"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class GuardViolation(TicketCommandError):
    code = "guard_violation"
    status_code = 409


class ForwardLimitExceeded(GuardViolation):
    code = "forward_limit_exceeded"


class PermissionDenied(TicketCommandError):
    code = "permission_denied"
    status_code = 403


class TicketNotFound(TicketCommandError):
    code = "not_found"
    status_code = 404


class StaleReferenceError(TicketCommandError):
    code = "stale_reference"
    status_code = 409

    def __init__(self, message: str):
        super().__init__(f"{message}. Please refresh and retry.")


class ConcurrentModificationError(TicketCommandError):
    code = "concurrent_modification"
    status_code = 409


class PayloadTooLarge(TicketCommandError):
    code = "payload_too_large"
    status_code = 413


class InvalidTokenError(TicketCommandError):
    code = "invalid_token"
    status_code = 401


class DeliveryFailed(Exception):
    """A notification channel rejected or could not deliver a message."""

    def __init__(self, channel: str, error: str):
        super().__init__(f"{channel} delivery failed: {error}")
        self.channel = channel
        self.error = error
