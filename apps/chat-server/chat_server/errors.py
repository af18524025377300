"""Error taxonomy shared by the ledger, dispatch layer and provider gateway."""

from __future__ import annotations


class ChatServiceError(Exception):
    """Base class for every error the chat service raises on purpose."""

    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class Unauthenticated(ChatServiceError):
    """No caller identity could be resolved."""

    status_code = 401

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class NotAuthorized(ChatServiceError):
    """Caller is known but does not own the target resource.

    Rendered exactly like NotFound so a response never reveals that the
    resource exists under another owner.
    """

    status_code = 404

    def __init__(self, message: str = "Chat not found or access denied") -> None:
        super().__init__(message)


class NotFound(ChatServiceError):
    status_code = 404

    def __init__(self, message: str = "Chat not found or access denied") -> None:
        super().__init__(message)


class InvalidOperation(ChatServiceError):
    status_code = 400


class UpstreamError(ChatServiceError):
    """A provider call failed: credentials, HTTP status, transport or payload."""

    status_code = 502


class UnsupportedProviderError(UpstreamError, InvalidOperation):
    """The chat names a provider the gateway has no strategy for."""

    status_code = 400

    def __init__(self, provider: str) -> None:
        super().__init__(f"Unsupported provider: {provider}")
        self.provider = provider
