# session.py
# Description: Chat session orchestration. Assembles the prompt from the
# session's bounded history, dispatches it in batch or streaming mode and
# records the exchange once the reply is known.

from __future__ import annotations

import logging
from enum import Enum
from typing import Generator, Iterator, Optional, Protocol, Union

from config import settings
from connectivity import ConnectivityMonitor, ConnectivityStatus
from errors import NotReady, StreamInterrupted
from history import HistoryBuffer, Role, Turn
from llm_client import CompletionOptions, CompletionResult
from prompt import SYSTEM_INSTRUCTION, PromptRequest, build_prompt
from relay import StreamRelay

logger = logging.getLogger(__name__)


class SendMode(str, Enum):
    BATCH = "batch"
    STREAMING = "streaming"


class CompletionBackend(Protocol):
    """What a session needs from CompletionClient or ChatAPIClient."""

    def complete_batch(
        self, request: PromptRequest, options: Optional[CompletionOptions] = None
    ) -> CompletionResult: ...

    def complete_streaming(
        self, request: PromptRequest, options: Optional[CompletionOptions] = None
    ) -> Iterator[str]: ...


class ChatSession:
    """
    One conversation owned by one caller. At most one send may be in flight;
    callers disable input while a request is outstanding. Instances share no
    mutable state, so each user gets their own session.
    """

    def __init__(
        self,
        client: CompletionBackend,
        monitor: Optional[ConnectivityMonitor] = None,
        system_instruction: str = SYSTEM_INSTRUCTION,
        history_cap: Optional[int] = None,
        options: Optional[CompletionOptions] = None,
    ) -> None:
        self._client = client
        self.monitor = monitor or ConnectivityMonitor()
        self.system_instruction = system_instruction
        self.history = HistoryBuffer(settings.history_cap if history_cap is None else history_cap)
        self.options = options or CompletionOptions()

    @property
    def status(self) -> ConnectivityStatus:
        return self.monitor.status

    def check_connectivity(self) -> ConnectivityStatus:
        return self.monitor.refresh()

    def clear_history(self) -> None:
        self.history.clear()

    def send(
        self, user_message: str, mode: SendMode = SendMode.STREAMING
    ) -> Union[CompletionResult, Generator[str, None, None]]:
        """
        Send one user message.

        Batch mode returns the CompletionResult. Streaming mode returns a
        generator of fragments; history is updated when it is exhausted.
        Readiness and input are validated before anything is returned.

        Raises:
            NotReady: Connectivity is not `connected`.
            InvalidInput: The message is empty or whitespace-only.
            AuthError, RateLimited, ProviderError: From the completion backend.
        """
        if self.status is not ConnectivityStatus.CONNECTED:
            raise NotReady(self.status)
        request = build_prompt(self.system_instruction, self.history.snapshot(), user_message)

        if SendMode(mode) is SendMode.BATCH:
            result = self._client.complete_batch(request, self.options)
            self._record(request.user, Turn(Role.ASSISTANT, result.text))
            return result
        return self._stream(request)

    def _stream(self, request: PromptRequest) -> Generator[str, None, None]:
        relay = StreamRelay(self._client.complete_streaming(request, self.options))
        try:
            yield from relay
        except StreamInterrupted as exc:
            # the user saw this text, so history keeps it, marked incomplete
            self._record(request.user, Turn(Role.ASSISTANT, exc.partial_text, incomplete=True))
            raise
        self._record(request.user, Turn(Role.ASSISTANT, relay.text))

    def _record(self, user_turn: Turn, assistant_turn: Turn) -> None:
        self.history.append(user_turn)
        self.history.append(assistant_turn)
        logger.info(
            "Exchange recorded",
            extra={
                "history_len": len(self.history),
                "reply_chars": len(assistant_turn.content),
                "incomplete": assistant_turn.incomplete,
            },
        )
