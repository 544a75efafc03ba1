# errors.py
# Description: Error taxonomy shared by the completion client, the relay,
# the chat session and the HTTP server. Each class knows the HTTP status it
# maps to and the message that is safe to show to a browser.

from __future__ import annotations

from typing import Any


class ChatError(Exception):
    """Base exception for every failure surfaced by the chat relay."""

    status_code: int = 500
    public_message: str = "Failed to process request. Please try again."


class InvalidInput(ChatError, ValueError):
    """Raised when the user message is missing, empty or whitespace-only."""

    status_code = 400
    public_message = "Message is required"


class AuthError(ChatError):
    """Raised when the provider rejects the configured credential."""

    status_code = 401
    public_message = "Invalid OpenAI API key. Please check your configuration."


class RateLimited(ChatError):
    """Raised when the provider throttles the request. Never retried here."""

    status_code = 429
    public_message = "Rate limit exceeded. Please try again later."

    def __init__(self, message: str = "", retry_after: float | None = None) -> None:
        super().__init__(message or self.public_message)
        self.retry_after = retry_after


class ProviderError(ChatError):
    """Raised for network failures, 5xx responses and malformed payloads."""


class ProviderTimeout(ProviderError):
    """Raised when the upstream call exceeds the caller-supplied timeout."""


class StreamInterrupted(ProviderError):
    """
    Raised when a stream fails after some fragments were already delivered.
    The delivered text is kept on `partial_text`; it is never retracted.
    """

    def __init__(self, message: str, partial_text: str) -> None:
        super().__init__(message)
        self.partial_text = partial_text


class NotReady(ChatError):
    """Raised when a send is attempted before connectivity is established."""

    status_code = 503
    public_message = "Service is not ready. Check the connection and API key."

    def __init__(self, status: Any) -> None:
        super().__init__(
            f"Cannot send while connectivity status is {getattr(status, 'value', status)}."
        )
        self.status = status
