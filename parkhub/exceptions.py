# parkhub/exceptions.py
"""
Domain errors raised by the space store and lifecycle service.
main.py maps them to HTTP responses; PreconditionFailed subclasses carry a
stable `code` so the UI can tell "already occupied" from "wrong plate".
"""

from typing import Optional


class SpaceError(Exception):
    code = "space_error"

    def __init__(self, message: str, space_number: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.space_number = space_number


class SpaceNotFound(SpaceError):
    code = "not_found"

    def __init__(self, space_number: str):
        super().__init__(f"Space '{space_number}' not found", space_number)


class PreconditionFailed(SpaceError):
    code = "precondition_failed"


class NotAvailable(PreconditionFailed):
    code = "not_available"


class NotReserved(PreconditionFailed):
    code = "not_reserved"


class PlateMismatch(PreconditionFailed):
    code = "plate_mismatch"


class PlateRequired(PlateMismatch):
    code = "plate_required"


class SessionMismatch(PreconditionFailed):
    code = "session_mismatch"


class NotEligible(PreconditionFailed):
    code = "not_eligible"


class NotOutOfService(PreconditionFailed):
    code = "not_out_of_service"


class ReservationNotExpired(NotReserved):
    """The sweep found a reservation that has not reached its deadline."""
    code = "reservation_not_expired"


class InvalidTransitionRequest(SpaceError):
    code = "invalid_request"


class ProvisioningConflict(SpaceError):
    code = "provisioning_conflict"


class StoreUnavailable(SpaceError):
    """The store could not be reached or timed out; nothing was applied."""
    code = "store_unavailable"


class NotificationSinkUnavailable(Exception):
    """Raised by a sink; NotificationEmitter logs it and never lets it escape."""
