class ShelfmarkError(Exception):
    status_code = 500
    default_message = "internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_dict(self) -> dict:
        return {"error": self.message}


class Unauthenticated(ShelfmarkError):
    status_code = 401
    default_message = "authentication required"


class InvalidInput(ShelfmarkError):
    status_code = 400
    default_message = "invalid input"


class NotFoundOrForbidden(ShelfmarkError):
    status_code = 404
    default_message = "bookmark not found"


class RowPolicyViolation(NotFoundOrForbidden):
    """Raised by the row policy when a write leaves the acting owner's scope."""


class StoreUnavailable(ShelfmarkError):
    status_code = 500
    default_message = "bookmark store unavailable"
