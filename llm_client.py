# llm_client.py
# Description: Provides a client for the OpenAI-compatible chat completions
# API. Handles request formatting, batch and streaming responses, and
# classification of provider errors.

from __future__ import annotations
import json
import logging
import socket
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generator, Iterator, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic.alias_generators import to_camel
from urllib3.exceptions import ReadTimeoutError

# Import the centralized configuration
from config import settings
from errors import AuthError, ChatError, ProviderError, ProviderTimeout, RateLimited
from prompt import PromptRequest

logger = logging.getLogger(__name__)

STREAM_DONE = "[DONE]"

# ---------------------------------------------------------------------------
# request / response types
# ---------------------------------------------------------------------------

class CompletionOptions(BaseModel):
    """Per-request generation settings. Defaults come from `settings`."""
    model: str = Field(default_factory=lambda: settings.openai_model)
    max_tokens: int = Field(default_factory=lambda: settings.max_tokens, gt=0)
    temperature: float = Field(default_factory=lambda: settings.temperature, ge=0.0, le=2.0)
    timeout: float = Field(default_factory=lambda: settings.request_timeout, gt=0)


class UsageStats(BaseModel):
    """Token accounting reported by the provider for a batch completion."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class CompletionResult:
    text: str
    usage: UsageStats

# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

def parse_retry_after(response: Any) -> Optional[float]:
    value = (getattr(response, "headers", None) or {}).get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def _error_message(body: Any) -> str:
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or "")
    return str(error or "")


def _error_detail(response: Any) -> str:
    """Best-effort extraction of the provider's error message."""
    try:
        return _error_message(response.json())
    except (ValueError, AttributeError):
        return ""


def classify_http_error(exc: requests.exceptions.HTTPError) -> ChatError:
    """Map an upstream HTTP failure onto the error taxonomy."""
    response = exc.response
    status = getattr(response, "status_code", None)
    detail = _error_detail(response) if response is not None else ""
    if status == 401:
        return AuthError(detail or "Credential rejected by provider.")
    if status == 429:
        return RateLimited(detail, retry_after=parse_retry_after(response))
    return ProviderError(f"Provider returned HTTP {status}. {detail}".strip())


def _parse_usage(data: Dict[str, Any]) -> UsageStats:
    return UsageStats.model_validate(data.get("usage") or {})


def is_read_timeout(exc: requests.exceptions.ConnectionError) -> bool:
    """True when requests wrapped a body read timeout as a ConnectionError."""
    return bool(exc.args) and isinstance(exc.args[0], ReadTimeoutError)

# ---------------------------------------------------------------------------
# streaming handle
# ---------------------------------------------------------------------------

class UpstreamStream(Iterator[str]):
    """
    Iterator over the fragments of one streaming HTTP response.

    `close()` belongs to the thread that iterates. `abort()` may be called
    from any other thread: it shuts the socket down so a read blocked on a
    stalled provider returns at once, and the iterating thread then unwinds
    and closes the response itself.
    """

    def __init__(self, fragments: Callable[["UpstreamStream"], Iterator[str]]) -> None:
        self.response: Any = None
        self._fragments = fragments(self)

    def __iter__(self) -> "UpstreamStream":
        return self

    def __next__(self) -> str:
        return next(self._fragments)

    def close(self) -> None:
        close = getattr(self._fragments, "close", None)
        if close is not None:
            close()

    def abort(self) -> None:
        response = self.response
        if response is None:
            return
        connection = getattr(getattr(response, "raw", None), "_connection", None)
        sock = getattr(connection, "sock", None)
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug("Upstream socket already closed", extra={"error": str(e)})

# ---------------------------------------------------------------------------
# client
# ---------------------------------------------------------------------------

class CompletionClient:
    """
    Thin adapter over the chat completions endpoint. Every call is a fresh
    upstream request; nothing is cached and nothing is retried.
    """

    def __init__(self, api_key: SecretStr | str | None = None, base_url: str | None = None) -> None:
        if isinstance(api_key, str):
            api_key = SecretStr(api_key)
        self._api_key = api_key if api_key is not None else settings.openai_api_key
        self._base_url = (base_url or settings.openai_base_url).rstrip("/")

    @property
    def has_credential(self) -> bool:
        return bool(self._api_key.get_secret_value())

    def _headers(self) -> Dict[str, str]:
        if not self.has_credential:
            raise AuthError("No API key configured.")
        return {
            "Authorization": f"Bearer {self._api_key.get_secret_value()}",
            "Content-Type": "application/json",
        }

    def _payload(self, request: PromptRequest, options: CompletionOptions, stream: bool) -> Dict[str, Any]:
        return {
            "model": options.model,
            "messages": request.to_messages(),
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "stream": stream,
        }

    def complete_batch(self, request: PromptRequest, options: CompletionOptions | None = None) -> CompletionResult:
        """
        Requests a full completion and returns its text with token usage.

        Raises:
            AuthError, RateLimited, ProviderError, ProviderTimeout
        """
        options = options or CompletionOptions()
        url = f"{self._base_url}/chat/completions"
        headers = self._headers()
        logger.info(
            "Sending batch completion request",
            extra={"url": url, "model": options.model, "turns": len(request)},
        )
        start = time.monotonic()
        try:
            response = requests.post(
                url,
                headers=headers,
                json=self._payload(request, options, stream=False),
                timeout=options.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.HTTPError as e:
            raise classify_http_error(e) from e
        except requests.exceptions.Timeout as e:
            raise ProviderTimeout(f"Request timed out after {options.timeout}s.") from e
        except requests.exceptions.ConnectionError as e:
            if is_read_timeout(e):
                raise ProviderTimeout(f"Request timed out after {options.timeout}s.") from e
            raise ProviderError(f"Connection to {url} failed.") from e
        except ValueError as e:
            raise ProviderError("Provider returned a malformed response.") from e
        except requests.exceptions.RequestException as e:
            raise ProviderError("An unexpected request error occurred.") from e

        try:
            text = data["choices"][0]["message"]["content"] or ""
            usage = _parse_usage(data)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ProviderError("Provider returned a malformed response.") from e

        logger.info(
            "Batch completion finished",
            extra={
                "latency_ms": int((time.monotonic() - start) * 1000),
                "total_tokens": usage.total_tokens,
            },
        )
        return CompletionResult(text=text, usage=usage)

    def complete_streaming(
        self, request: PromptRequest, options: CompletionOptions | None = None
    ) -> UpstreamStream:
        """
        Streams text fragments of the completion as the provider emits them.
        The HTTP request is issued on the first iteration; closing the
        stream releases the underlying connection and `abort()` unblocks a
        pending read from another thread.

        `options.timeout` bounds the connect and each socket read, not the
        whole completion; a stalled stream fails with ProviderTimeout.

        Raises:
            AuthError, RateLimited, ProviderError, ProviderTimeout
        """
        options = options or CompletionOptions()
        return UpstreamStream(lambda stream: self._stream_fragments(stream, request, options))

    def _stream_fragments(
        self, stream: UpstreamStream, request: PromptRequest, options: CompletionOptions
    ) -> Generator[str, None, None]:
        url = f"{self._base_url}/chat/completions"
        headers = self._headers()
        payload = self._payload(request, options, stream=True)

        logger.info(
            "Sending streaming completion request",
            extra={"url": url, "model": options.model, "turns": len(request)},
        )

        try:
            with requests.post(
                url, headers=headers, json=payload, stream=True, timeout=options.timeout
            ) as response:
                stream.response = response
                response.raise_for_status()
                for raw in response.iter_lines(decode_unicode=True):
                    if not raw or not raw.startswith("data:"):
                        continue  # blank separators and ": keep-alive" comments
                    data_str = raw[len("data:"):].strip()
                    if data_str == STREAM_DONE:
                        break
                    try:
                        data = json.loads(data_str)
                    except json.JSONDecodeError:
                        logger.warning("Skipping non-JSON event in stream")
                        continue
                    if not isinstance(data, dict):
                        raise ProviderError("Provider returned a malformed stream event.")
                    if data.get("error"):
                        raise ProviderError(
                            _error_message(data) or "Provider reported an error mid-stream."
                        )
                    for choice in data.get("choices") or []:
                        chunk = (choice.get("delta") or {}).get("content") or ""
                        if chunk:
                            yield chunk
        except requests.exceptions.HTTPError as e:
            raise classify_http_error(e) from e
        except requests.exceptions.Timeout as e:
            raise ProviderTimeout(f"Request timed out after {options.timeout}s.") from e
        except requests.exceptions.ConnectionError as e:
            if is_read_timeout(e):
                raise ProviderTimeout(f"Stream stalled for more than {options.timeout}s.") from e
            raise ProviderError(f"Connection to {url} failed.") from e
        except requests.exceptions.RequestException as e:
            raise ProviderError("An unexpected request error occurred.") from e
        except (AttributeError, TypeError) as e:
            raise ProviderError("Provider returned a malformed stream event.") from e

    def list_models(self, timeout: float | None = None) -> int:
        """
        Lists the models visible to the configured credential and returns how
        many there are. Succeeds only if the provider accepts the credential.
        """
        url = f"{self._base_url}/models"
        try:
            response = requests.get(url, headers=self._headers(), timeout=timeout or settings.request_timeout)
            response.raise_for_status()
            return len(response.json().get("data") or [])
        except requests.exceptions.HTTPError as e:
            raise classify_http_error(e) from e
        except requests.exceptions.Timeout as e:
            raise ProviderTimeout("Model listing timed out.") from e
        except (ValueError, AttributeError) as e:
            raise ProviderError("Provider returned a malformed model list.") from e
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"Connection to {url} failed.") from e
