"""
errors.py — Error Taxonomy of the Client Layer

    • ServiceUnavailableError — no response (network unreachable, timeout, dropped stream)
    • RequestRejectedError    — the service answered with an error status and message
    • MalformedResponseError  — a response or stream frame could not be parsed
    • Invalid-local errors    — operations disallowed by the current local state
"""


class CampusBotError(Exception):
    """Base class for every error raised by this package."""


class ServiceUnavailableError(CampusBotError):
    """Transport failure: the collaborator never produced a response."""


class RequestRejectedError(CampusBotError):
    """
    The collaborator responded with an error status.

    Attributes:
        message (str): The server's error message, unchanged.
        status_code (int): HTTP status of the response.
    """

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401


class MalformedResponseError(CampusBotError):
    """A response body or telemetry frame did not match the expected shape."""


class InvalidTransitionError(CampusBotError):
    """An order status transition that the vendor workflow does not allow."""


class NotAuthenticatedError(CampusBotError):
    pass


class EmptyCartError(CampusBotError):
    pass
