import pytest

from history import HistoryBuffer, Role, Turn


def make_turns(count):
    return [
        Turn(Role.USER if i % 2 == 0 else Role.ASSISTANT, f"msg{i}")
        for i in range(count)
    ]


class TestHistoryBuffer:
    @pytest.mark.parametrize("appended", [0, 1, 19, 20, 21, 45])
    def test_keeps_most_recent_turns_in_order(self, appended):
        """
        For N appends the buffer holds min(N, cap) turns, which are exactly
        the most recent ones in their original order.
        """
        # Arrange
        buffer = HistoryBuffer(cap=20)
        turns = make_turns(appended)
        # Act
        for turn in turns:
            buffer.append(turn)
        # Assert
        snapshot = buffer.snapshot()
        assert len(snapshot) == min(appended, 20)
        assert list(snapshot) == turns[-20:]

    def test_snapshot_is_detached_from_later_mutation(self):
        """A snapshot must not change when the buffer changes afterwards."""
        # Arrange
        buffer = HistoryBuffer(cap=3, turns=make_turns(2))
        snapshot = buffer.snapshot()
        # Act
        buffer.append(Turn(Role.USER, "later"))
        buffer.clear()
        # Assert
        assert [t.content for t in snapshot] == ["msg0", "msg1"]
        assert len(buffer) == 0

    def test_clear_empties_buffer(self):
        buffer = HistoryBuffer(cap=5, turns=make_turns(4))
        buffer.clear()
        assert buffer.snapshot() == ()

    def test_zero_cap_keeps_nothing(self):
        buffer = HistoryBuffer(cap=0)
        buffer.append(Turn(Role.USER, "dropped"))
        assert len(buffer) == 0

    def test_negative_cap_rejected(self):
        with pytest.raises(ValueError):
            HistoryBuffer(cap=-1)

    def test_default_cap_comes_from_settings(self, monkeypatch):
        """Without an explicit cap the configured history_cap applies."""
        import history

        monkeypatch.setattr(history.settings, "history_cap", 4)
        buffer = HistoryBuffer()
        assert buffer.cap == 4


class TestTurn:
    def test_turn_is_immutable(self):
        turn = Turn(Role.ASSISTANT, "hi")
        with pytest.raises(AttributeError):
            turn.content = "changed"  # type: ignore[misc]

    def test_to_dict_drops_local_flags(self):
        turn = Turn(Role.ASSISTANT, "partial", incomplete=True)
        assert turn.to_dict() == {"role": "assistant", "content": "partial"}
