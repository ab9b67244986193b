"""Booking engine error taxonomy.

Every failure the engine surfaces is one of these typed outcomes. Routes never
build HTTP errors for them by hand: the handler registered in main.py maps
``status_code`` and ``code`` onto the response.
"""

from fastapi import status


class BookingError(Exception):
    """Base class for all engine outcomes that are not a success."""

    code = "booking_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(BookingError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class SlotConflict(BookingError):
    """The (facility, date, hour) key is already held by a booking or a block.

    Expected under load. Callers should refresh availability and pick another
    slot; the engine never retries the same slot.
    """

    code = "slot_conflict"
    status_code = status.HTTP_409_CONFLICT


class InvalidRequest(BookingError):
    code = "invalid_request"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidCode(BookingError):
    code = "invalid_code"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class Forbidden(BookingError):
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class StorageUnavailable(BookingError):
    """The store kept failing after the retry. The message never carries driver details."""

    code = "storage_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "The booking service is temporarily unavailable. Please try again."):
        super().__init__(message)


class AlreadyRated(BookingError):
    code = "already_rated"
    status_code = status.HTTP_409_CONFLICT
