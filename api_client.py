# api_client.py
# Description: Client for the backend chat API, used by the browser UI and
# the terminal client. It offers the same batch/streaming contract as
# CompletionClient so a ChatSession can sit on top of either one.

from __future__ import annotations

import logging
from typing import Any, Dict, Generator, Optional

import requests

from config import settings
from errors import AuthError, ChatError, InvalidInput, ProviderError, ProviderTimeout, RateLimited
from llm_client import (
    CompletionOptions,
    CompletionResult,
    UpstreamStream,
    UsageStats,
    is_read_timeout,
    parse_retry_after,
)
from prompt import PromptRequest

logger = logging.getLogger(__name__)

# Appended by the server when the upstream stream dies after output started.
INCOMPLETE_MARKER = "\n\n[partial response, terminated early]"

_STATUS_ERRORS = {400: InvalidInput, 401: AuthError, 429: RateLimited}


def _held_tail_length(text: str) -> int:
    """Length of the longest suffix of `text` that could start the marker."""
    for size in range(min(len(text), len(INCOMPLETE_MARKER) - 1), 0, -1):
        if INCOMPLETE_MARKER.startswith(text[-size:]):
            return size
    return 0


def _error_for(response: Any) -> ChatError:
    try:
        message = str(response.json().get("error", ""))
    except (ValueError, AttributeError):
        message = ""
    error_cls = _STATUS_ERRORS.get(response.status_code, ProviderError)
    logger.warning("Backend returned an error", extra={"status": response.status_code})
    message = message or f"Backend returned HTTP {response.status_code}."
    if error_cls is RateLimited:
        return RateLimited(message, retry_after=parse_retry_after(response))
    return error_cls(message)


class ChatAPIClient:
    """
    Talks to the backend's /chat and /chat/simple endpoints.

    The backend owns the system instruction and the generation options, so
    only the history and the new user message of a PromptRequest are sent.
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None) -> None:
        self._base_url = (base_url or settings.chat_api_url).rstrip("/")
        self._timeout = timeout or settings.request_timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    def _body(self, request: PromptRequest) -> Dict[str, Any]:
        return {
            "message": request.user.content,
            "conversationHistory": [turn.to_dict() for turn in request.history],
        }

    def _timeout_for(self, options: Optional[CompletionOptions]) -> float:
        return options.timeout if options is not None else self._timeout

    def complete_batch(self, request: PromptRequest, options: CompletionOptions | None = None) -> CompletionResult:
        url = f"{self._base_url}/chat/simple"
        try:
            response = requests.post(url, json=self._body(request), timeout=self._timeout_for(options))
        except requests.exceptions.Timeout as e:
            raise ProviderTimeout("Backend request timed out.") from e
        except requests.exceptions.ConnectionError as e:
            if is_read_timeout(e):
                raise ProviderTimeout("Backend request timed out.") from e
            raise ProviderError(f"Connection to {url} failed.") from e
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"Connection to {url} failed.") from e

        if not response.ok:
            raise _error_for(response)
        try:
            data = response.json()
            return CompletionResult(
                text=data["response"] or "",
                usage=UsageStats.model_validate(data.get("usage") or {}),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError("Backend returned a malformed response.") from e

    def complete_streaming(
        self, request: PromptRequest, options: CompletionOptions | None = None
    ) -> UpstreamStream:
        """
        Streams the backend's text/plain body. A trailing incompleteness
        marker is stripped and reported as a ProviderError, which the relay
        turns into StreamInterrupted. The timeout bounds each socket read,
        not the whole reply.
        """
        return UpstreamStream(lambda stream: self._stream_body(stream, request, options))

    def _stream_body(
        self, stream: UpstreamStream, request: PromptRequest, options: CompletionOptions | None
    ) -> Generator[str, None, None]:
        url = f"{self._base_url}/chat"
        try:
            with requests.post(
                url, json=self._body(request), stream=True, timeout=self._timeout_for(options)
            ) as response:
                stream.response = response
                if not response.ok:
                    raise _error_for(response)
                if response.encoding is None:
                    response.encoding = "utf-8"
                pending = ""
                for chunk in response.iter_content(chunk_size=None, decode_unicode=True):
                    pending += chunk
                    if INCOMPLETE_MARKER in pending:
                        head = pending.split(INCOMPLETE_MARKER, 1)[0]
                        if head:
                            yield head
                        raise ProviderError("Backend reported a partial response.")
                    held = _held_tail_length(pending)
                    ready, pending = pending[: len(pending) - held], pending[len(pending) - held:]
                    if ready:
                        yield ready
                if pending:
                    yield pending
        except requests.exceptions.Timeout as e:
            raise ProviderTimeout("Backend stream timed out.") from e
        except requests.exceptions.ConnectionError as e:
            if is_read_timeout(e):
                raise ProviderTimeout("Backend stream stalled.") from e
            raise ProviderError(f"Connection to {url} failed.") from e
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"Connection to {url} failed.") from e
