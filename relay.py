# relay.py
#
# Description: Producer/consumer pipeline that relays an upstream token stream
#              to a consumer as fragments arrive. A worker thread reads the
#              upstream iterator and pushes events into a queue; the consumer
#              drains the queue, receives each fragment immediately and the
#              relay accumulates the delivered text for the conversation
#              history. End of stream and failures are explicit events.
#

# --------------------------------------------------------------------------- #
# imports
# --------------------------------------------------------------------------- #
from __future__ import annotations

import logging
import queue
import threading
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, List, Optional, Tuple

from errors import ChatError, ProviderError, StreamInterrupted

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------------- #
# events and states
# --------------------------------------------------------------------------- #
_FRAGMENT = "fragment"
_END = "end"
_ERROR = "error"

Event = Tuple[str, Any]

# upper bound on waiting for the worker after a cancel
WORKER_JOIN_TIMEOUT = 2.0


class RelayState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

# --------------------------------------------------------------------------- #
# relay
# --------------------------------------------------------------------------- #
class StreamRelay:
    """
    Relays fragments from a lazy, non-restartable upstream iterator.

    Iterate the relay to receive fragments in arrival order. Empty fragments
    are dropped. When the upstream is exhausted the iteration ends and `text`
    holds the concatenation of everything delivered. When the upstream fails
    before anything was delivered its error is re-raised as is (non-chat
    errors become ProviderError); after partial delivery a StreamInterrupted
    carrying the delivered text is raised instead. Closing the iterator early
    cancels the relay, aborts a pending upstream read when the upstream
    exposes `abort()` and the upstream is closed by the worker.
    """

    def __init__(
        self, upstream: Iterable[str], abort: Optional[Callable[[], None]] = None
    ) -> None:
        self._upstream = iter(upstream)
        self._abort = abort if abort is not None else getattr(upstream, "abort", None)
        self._events: "queue.Queue[Event]" = queue.Queue()
        self._cancelled = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._fragments: List[str] = []
        self.state = RelayState.PENDING
        self.error: Optional[ChatError] = None

    @property
    def text(self) -> str:
        """Text delivered to the consumer so far."""
        return "".join(self._fragments)

    @property
    def incomplete(self) -> bool:
        return self.state is RelayState.FAILED and bool(self._fragments)

    # ------------------------------------------------------------------ #
    # producer side
    # ------------------------------------------------------------------ #
    def start(self) -> None:
        if self._worker is not None:
            return
        self.state = RelayState.STREAMING
        self._worker = threading.Thread(target=self._produce, name="stream-relay", daemon=True)
        self._worker.start()

    def _produce(self) -> None:
        try:
            for fragment in self._upstream:
                if self._cancelled.is_set():
                    break
                if fragment:
                    self._events.put((_FRAGMENT, fragment))
        except Exception as exc:  # handed to the consumer, which re-raises it
            self._events.put((_ERROR, exc))
            return
        finally:
            close = getattr(self._upstream, "close", None)
            if close is not None:
                close()
        self._events.put((_END, None))

    def cancel(self) -> None:
        """
        Stop relaying. The upstream's abort hook, when it has one, unblocks a
        read in progress; the worker then closes the upstream.
        """
        active = self.state in (RelayState.PENDING, RelayState.STREAMING)
        if active:
            self.state = RelayState.CANCELLED
        self._cancelled.set()
        if active and self._abort is not None:
            self._abort()
        # wake a consumer blocked on the queue
        self._events.put((_END, None))

    # ------------------------------------------------------------------ #
    # consumer side
    # ------------------------------------------------------------------ #
    def __iter__(self) -> Iterator[str]:
        self.start()
        try:
            while True:
                kind, payload = self._events.get()
                if self._cancelled.is_set():
                    return
                if kind == _FRAGMENT:
                    self._fragments.append(payload)
                    yield payload
                elif kind == _END:
                    self.state = RelayState.COMPLETED
                    return
                else:
                    self.state = RelayState.FAILED
                    self.error = self._failure(payload)
                    if self.error is payload:
                        raise payload
                    raise self.error from payload
        finally:
            if self.state is RelayState.STREAMING:
                logger.info(
                    "Stream relay cancelled by consumer",
                    extra={"fragments": len(self._fragments)},
                )
                self.cancel()
            if self.state is RelayState.CANCELLED and self._worker is not None:
                self._worker.join(timeout=WORKER_JOIN_TIMEOUT)

    def _failure(self, exc: BaseException) -> ChatError:
        if self._fragments:
            logger.warning(
                "Upstream failed mid-stream; partial response, terminated early",
                extra={"fragments": len(self._fragments), "error": str(exc)},
            )
            return StreamInterrupted(
                f"Partial response, terminated early: {exc}", partial_text=self.text
            )
        if isinstance(exc, ChatError):
            return exc
        return ProviderError(f"Upstream stream failed: {exc}")

    def drain(self, sink: Callable[[str], None]) -> str:
        """Forward every fragment to `sink` and return the full text."""
        for fragment in self:
            sink(fragment)
        return self.text


def relay(upstream: Iterable[str], sink: Callable[[str], None]) -> str:
    """Relay `upstream` into `sink` and return the accumulated text."""
    return StreamRelay(upstream).drain(sink)
