"""
Domain errors raised by the auction services

Routes let these propagate; ``main.py`` renders them as ``{"detail": ...}``
with the error's status code. The realtime layer sends the message back as an
``error`` frame instead.
"""

from fastapi import status


class MarketplaceError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationFailed(MarketplaceError):
    """Malformed or out-of-range input"""
    status_code = status.HTTP_400_BAD_REQUEST


class NotAuthorized(MarketplaceError):
    """Caller is not allowed to act on the resource"""
    status_code = status.HTTP_403_FORBIDDEN


class StateConflict(MarketplaceError):
    """The auction or chat is not in a state that allows the operation"""
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
