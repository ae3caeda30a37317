"""
Domain errors raised by the service layer.

Each error carries the HTTP status it maps to; the handlers registered in
``gitchat.main`` turn them into JSON responses.
"""

from fastapi import status


class ChatError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail: str = "Internal server error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class Unauthorized(ChatError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Unauthorized. Please login first."


class Forbidden(ChatError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Access denied"


class NotFound(ChatError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class BadRequest(ChatError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Bad request"


class PayloadTooLarge(ChatError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    default_detail = "File too large"


class UnsupportedMediaType(ChatError):
    status_code = status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
    default_detail = "Only image uploads are allowed"


class Internal(ChatError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Internal server error"
