# history.py
#
# Description: Structured conversation turns and the bounded history buffer
#              that re-seeds future prompts. The buffer keeps only the most
#              recent turns and never holds the system instruction, which is
#              injected fresh for every request.
#

# --------------------------------------------------------------------------- #
# imports
# --------------------------------------------------------------------------- #
from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, Iterable, Tuple

from config import settings

# --------------------------------------------------------------------------- #
# constants and type definitions
# --------------------------------------------------------------------------- #

class Role(str, Enum):
    """Speaker of a turn."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    """One message in a conversation. Immutable once created."""
    role: Role
    content: str
    incomplete: bool = False  # assistant reply that was cut off mid-stream

    def to_dict(self) -> Dict[str, str]:
        """Wire form used by the completion API and the HTTP surface."""
        return {"role": self.role.value, "content": self.content}


History = Tuple[Turn, ...]

# --------------------------------------------------------------------------- #
# bounded buffer
# --------------------------------------------------------------------------- #
class HistoryBuffer:
    """
    Append-only, chronologically ordered log of turns capped at `cap` entries.
    When an append would exceed the cap the oldest turns are evicted first,
    so the buffer always holds the most recent `min(appended, cap)` turns.
    """

    def __init__(self, cap: int | None = None, turns: Iterable[Turn] = ()) -> None:
        cap = settings.history_cap if cap is None else cap
        if cap < 0:
            raise ValueError("History cap must be zero or positive.")
        self._turns: Deque[Turn] = deque(maxlen=cap)
        self.extend(turns)

    @property
    def cap(self) -> int:
        return self._turns.maxlen or 0

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    def extend(self, turns: Iterable[Turn]) -> None:
        for turn in turns:
            self.append(turn)

    def snapshot(self) -> History:
        """Return the current turns as a tuple detached from the buffer."""
        return tuple(self._turns)

    def clear(self) -> None:
        self._turns.clear()

    def __len__(self) -> int:
        return len(self._turns)
