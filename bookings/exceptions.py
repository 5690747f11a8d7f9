class BookingError(Exception):
    """A booking request cannot be made or changed."""


class RoomUnavailable(BookingError):
    pass


class BookingStateError(BookingError):
    pass
