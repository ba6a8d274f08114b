"""
Failure kinds raised by the rental lifecycle.

Every kind except StorageFailure is an expected, user-facing outcome; the
HTTP layer turns them into structured 4xx responses carrying ``message``.
"""


class RentalError(Exception):
    default_message = "Error: rental operation failed"
    status_code = 400

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def error_kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        return self.message


class NoAvailableInventory(RentalError):
    default_message = "Sorry, this equipment is already reserved."


class InvalidCode(RentalError):
    default_message = "Invalid code!"


class AlreadyCancelled(RentalError):
    default_message = "This rental was cancelled because the pickup time limit has passed."


class InvalidState(RentalError):
    default_message = "Rental is not in a state that allows this operation."


class HasPendency(RentalError):
    default_message = "This rental has a pendency."


class NotFound(RentalError):
    default_message = "Record not found."
    status_code = 404


class PendencyBlocksReservation(RentalError):
    default_message = "You need to resolve your pendencies before renting equipment."


class StorageFailure(RentalError):
    default_message = "Storage is unavailable."
    status_code = 503
