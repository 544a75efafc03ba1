"""Shared fakes for the chat relay test suite."""
from __future__ import annotations

import threading
from typing import Any, Iterable, List, Optional

import pytest

from connectivity import ConnectivityMonitor, ConnectivityStatus
from llm_client import CompletionResult, UsageStats


class FakeCompletionClient:
    """
    Stands in for CompletionClient / ChatAPIClient. Streaming fragments that
    are exceptions are raised when the stream reaches them.
    """

    def __init__(
        self,
        text: str = "",
        usage: Optional[UsageStats] = None,
        fragments: Iterable[Any] = (),
        error: Optional[Exception] = None,
        model_count: int = 3,
    ) -> None:
        self.text = text
        self.usage = usage or UsageStats()
        self.fragments = list(fragments)
        self.error = error
        self.model_count = model_count
        self.requests: List[Any] = []
        self.closed = False

    def complete_batch(self, request, options=None):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return CompletionResult(text=self.text, usage=self.usage)

    def complete_streaming(self, request, options=None):
        self.requests.append(request)

        def stream():
            try:
                for fragment in self.fragments:
                    if isinstance(fragment, Exception):
                        raise fragment
                    yield fragment
            finally:
                self.closed = True

        return stream()

    def list_models(self, timeout=None):
        if self.error is not None:
            raise self.error
        return self.model_count


class StalledUpstream:
    """
    Yields its fragments, then blocks the reading thread like a provider
    that stops sending. `abort()` unblocks the read; it is never released
    otherwise within the test timeouts.
    """

    def __init__(self, fragments: Iterable[str] = ("a",), stall: float = 30) -> None:
        self.fragments = list(fragments)
        self.stall = stall
        self.aborted = threading.Event()
        self.closed = threading.Event()
        self._stream = self._read()

    def _read(self):
        try:
            yield from self.fragments
            self.aborted.wait(timeout=self.stall)
            if not self.aborted.is_set():
                yield "late"
        finally:
            self.closed.set()

    def __iter__(self):
        return self

    def __next__(self):
        return next(self._stream)

    def close(self):
        self._stream.close()

    def abort(self):
        self.aborted.set()


@pytest.fixture
def stalled_upstream():
    return StalledUpstream()


@pytest.fixture
def fake_client():
    """A fake completion backend with no canned output."""
    return FakeCompletionClient()


@pytest.fixture
def connected_monitor():
    """A monitor whose last check reported `connected`."""
    monitor = ConnectivityMonitor("http://backend.test/api")
    monitor.status = ConnectivityStatus.CONNECTED
    return monitor


@pytest.fixture
def make_client():
    """Factory for fake completion backends with canned output."""
    return FakeCompletionClient
