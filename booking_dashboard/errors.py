class BookingError(Exception):
    """Base class for errors reported to the caller of a booking operation."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    """Missing or malformed booking fields, or a slot outside the schedule."""


class CapacityExceededError(BookingError):
    status_code = 409

    def __init__(self, taken: int, capacity: int):
        super().__init__(f"Slot already booked ({taken}/{capacity} taken)")
        self.taken = taken
        self.capacity = capacity


class NotFoundError(BookingError):
    status_code = 404


class IllegalTransitionError(BookingError):
    status_code = 409
