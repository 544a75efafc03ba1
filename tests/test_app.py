import pytest
from unittest.mock import MagicMock

import app
from connectivity import ConnectivityStatus
from errors import ProviderError
from llm_client import CompletionResult, UsageStats
from session import SendMode


class TestStatusText:
    @pytest.mark.parametrize(
        "status, text",
        [
            (ConnectivityStatus.CONNECTED, "Connected to OpenAI"),
            (ConnectivityStatus.INVALID_CREDENTIAL, "Invalid API Key"),
            (ConnectivityStatus.UNREACHABLE, "Connection Failed"),
            (ConnectivityStatus.UNKNOWN, "Checking connection..."),
        ],
    )
    def test_status_labels(self, status, text):
        assert text in app.status_text(status)


class TestInitSessionState:
    """Tests for the init_session_state function."""

    def test_initializes_session_state_keys(self, monkeypatch):
        """Test that missing keys are added and connectivity is checked once."""
        # Arrange
        fake_session_state = {}
        monkeypatch.setattr(app.st, "session_state", fake_session_state)
        chat_session = MagicMock()
        monkeypatch.setattr(app, "build_session", lambda: chat_session)

        # Act
        app.init_session_state()

        # Assert
        assert fake_session_state[app.SESSION_KEY_CHAT] is chat_session
        chat_session.check_connectivity.assert_called_once_with()
        messages = fake_session_state[app.SESSION_KEY_MESSAGES]
        assert len(messages) == 1
        assert messages[0]["content"] == app.GREETING
        assert fake_session_state[app.SESSION_KEY_STREAMING] is True

    def test_does_not_override_existing_keys(self, monkeypatch):
        """Test that existing session_state values are preserved."""
        # Arrange
        existing = MagicMock()
        fake_session_state = {
            app.SESSION_KEY_CHAT: existing,
            app.SESSION_KEY_MESSAGES: ["already"],
            app.SESSION_KEY_STREAMING: False,
        }
        monkeypatch.setattr(app.st, "session_state", fake_session_state)
        monkeypatch.setattr(app, "build_session", lambda: pytest.fail("session rebuilt"))

        # Act
        app.init_session_state()

        # Assert
        assert fake_session_state[app.SESSION_KEY_CHAT] is existing
        existing.check_connectivity.assert_not_called()
        assert fake_session_state[app.SESSION_KEY_MESSAGES] == ["already"]
        assert fake_session_state[app.SESSION_KEY_STREAMING] is False


class TestReplies:
    def test_stream_reply_renders_incrementally(self, monkeypatch):
        # Arrange
        placeholder = MagicMock()
        monkeypatch.setattr(app.st, "empty", lambda: placeholder)
        session = MagicMock()
        session.send.return_value = iter(["KY", "C ", "means..."])

        # Act
        reply = app.stream_reply(session, "What is KYC?")

        # Assert
        session.send.assert_called_once_with("What is KYC?", SendMode.STREAMING)
        rendered = [c.args[0] for c in placeholder.markdown.call_args_list]
        assert rendered == ["KY ▌", "KYC  ▌", "KYC means... ▌", "KYC means..."]
        assert reply["content"] == "KYC means..."
        assert "incomplete" not in reply

    def test_stream_reply_keeps_partial_text(self, monkeypatch, make_client, connected_monitor):
        """A reply cut off mid-stream is shown and flagged as incomplete."""
        # Arrange
        monkeypatch.setattr(app.st, "empty", lambda: MagicMock())
        session = app.ChatSession(
            make_client(fragments=["KY", ProviderError("reset")]), monitor=connected_monitor
        )

        # Act
        reply = app.stream_reply(session, "What is KYC?")

        # Assert
        assert reply["content"] == "KY"
        assert reply["incomplete"] is True

    def test_batch_reply_includes_token_count(self, monkeypatch):
        monkeypatch.setattr(app.st, "spinner", MagicMock())
        session = MagicMock()
        session.send.return_value = CompletionResult(
            text="KYC means...", usage=UsageStats(prompt_tokens=5, completion_tokens=10, total_tokens=15)
        )
        reply = app.batch_reply(session, "What is KYC?")
        session.send.assert_called_once_with("What is KYC?", SendMode.BATCH)
        assert reply["content"] == "KYC means..."
        assert reply["total_tokens"] == 15


class TestMain:
    """Tests for the main entry point behavior."""

    def test_main_initializes_and_renders_and_runs_chat(self, monkeypatch):
        """Test that main calls init_session_state, render_sidebar, and run_chat in order."""
        # Arrange
        called = []
        monkeypatch.setattr(app, "setup_logging", lambda: called.append("logging"))
        monkeypatch.setattr(app, "init_session_state", lambda: called.append("init"))
        monkeypatch.setattr(app, "render_sidebar", lambda: called.append("sidebar"))
        monkeypatch.setattr(app, "run_chat", lambda: called.append("chat"))
        monkeypatch.setattr(app.st, "set_page_config", lambda **kwargs: called.append("config"))

        # Act
        app.main()

        # Assert
        assert called == ["config", "logging", "init", "sidebar", "chat"]
