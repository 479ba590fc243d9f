"""Exceptions raised by the stores, the arbitration engine and the services."""
# pylint: disable=too-few-public-methods


class SurplusShareError(Exception):
    """Base class for errors that are reported back to the caller."""

    status_code = 500
    default_message = "Unexpected error."

    def __init__(self, message=None):
        super().__init__(message)
        self.message = message or self.default_message


class NotFoundError(SurplusShareError):
    """The referenced donation, request or other record does not exist."""

    status_code = 404
    default_message = "Resource not found."


class ConflictError(SurplusShareError):
    """A uniqueness rule was violated, e.g. a charity requesting the same donation twice."""

    status_code = 409
    default_message = "Resource already exists."


class InvalidStateError(SurplusShareError):
    """The requested transition is not allowed from the record's current status."""

    status_code = 400
    default_message = "Invalid state transition."


class ValidationError(SurplusShareError):
    status_code = 400
    default_message = "Missing or invalid fields."
