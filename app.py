# app.py
#
# Streamlit interface for the enterprise compliance assistant.
# Talks to the backend API through a per-browser ChatSession, gates the input
# on the connectivity status and streams replies into a plain placeholder.

# --------------------------------------------------------------------------- #
# imports
# --------------------------------------------------------------------------- #
from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict

import streamlit as st

from api_client import ChatAPIClient
from config import settings
from connectivity import ConnectivityMonitor, ConnectivityStatus
from errors import ChatError, StreamInterrupted
from logging_config import setup_logging
from session import ChatSession, SendMode

# --------------------------------------------------------------------------- #
# constants
# --------------------------------------------------------------------------- #
SESSION_KEY_CHAT = "chat_session"
SESSION_KEY_MESSAGES = "messages"
SESSION_KEY_STREAMING = "use_streaming"

GREETING = (
    "Hello! I'm your Enterprise Compliance and AFS Payment Gateway Assistant. "
    "How can I help you today?"
)
INCOMPLETE_NOTE = "⚠️ partial response, terminated early"

STATUS_TEXT: Dict[ConnectivityStatus, str] = {
    ConnectivityStatus.CONNECTED: "✅ Connected to OpenAI",
    ConnectivityStatus.INVALID_CREDENTIAL: "⚠️ Invalid API Key",
    ConnectivityStatus.UNREACHABLE: "❌ Connection Failed",
    ConnectivityStatus.UNKNOWN: "⏳ Checking connection...",
}

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------------- #
# helpers
# --------------------------------------------------------------------------- #
def status_text(status: ConnectivityStatus) -> str:
    return STATUS_TEXT.get(status, STATUS_TEXT[ConnectivityStatus.UNKNOWN])


def bot_message(content: str, **flags: Any) -> Dict[str, Any]:
    return {
        "role": "assistant",
        "content": content,
        "timestamp": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        **flags,
    }


def build_session() -> ChatSession:
    client = ChatAPIClient(settings.chat_api_url)
    monitor = ConnectivityMonitor(settings.chat_api_url)
    return ChatSession(client, monitor=monitor)


def init_session_state() -> None:
    if SESSION_KEY_CHAT not in st.session_state:
        session = build_session()
        session.check_connectivity()
        st.session_state[SESSION_KEY_CHAT] = session
    if SESSION_KEY_MESSAGES not in st.session_state:
        st.session_state[SESSION_KEY_MESSAGES] = [bot_message(GREETING)]
    if SESSION_KEY_STREAMING not in st.session_state:
        st.session_state[SESSION_KEY_STREAMING] = True

# --------------------------------------------------------------------------- #
# sidebar
# --------------------------------------------------------------------------- #
def render_sidebar() -> None:
    session: ChatSession = st.session_state[SESSION_KEY_CHAT]
    with st.sidebar:
        st.title("Settings")
        st.markdown(status_text(session.status))
        if st.button("🔌 check connection"):
            session.check_connectivity()
            st.rerun()

        st.checkbox("Stream responses", key=SESSION_KEY_STREAMING)

        if st.button("🔄 reset chat"):
            session.clear_history()
            st.session_state[SESSION_KEY_MESSAGES] = [bot_message(GREETING)]
            st.rerun()

# --------------------------------------------------------------------------- #
# main chat logic
# --------------------------------------------------------------------------- #
def render_message(message: Dict[str, Any]) -> None:
    body = message["content"]
    if message.get("incomplete"):
        body += f"\n\n<sub>{INCOMPLETE_NOTE}</sub>"
    if message.get("total_tokens") is not None:
        body += f"\n\n<sub>Tokens: {message['total_tokens']}</sub>"
    if message.get("timestamp"):
        body += f"\n\n<sub>{message['timestamp']}</sub>"
    bubble = st.chat_message(message["role"])
    if message.get("is_error"):
        bubble.error(message["content"])
    else:
        bubble.markdown(body, unsafe_allow_html=True)


def stream_reply(session: ChatSession, content: str) -> Dict[str, Any]:
    placeholder = st.empty()
    full_response = ""
    try:
        for chunk in session.send(content, SendMode.STREAMING):
            full_response += chunk
            placeholder.markdown(f"{full_response} ▌")
    except StreamInterrupted as exc:
        placeholder.markdown(exc.partial_text)
        return bot_message(exc.partial_text, incomplete=True)
    placeholder.markdown(full_response)
    return bot_message(full_response)


def batch_reply(session: ChatSession, content: str) -> Dict[str, Any]:
    with st.spinner("assistant is thinking…"):
        result = session.send(content, SendMode.BATCH)
    return bot_message(result.text, total_tokens=result.usage.total_tokens)


def run_chat() -> None:
    st.header("💬 Enterprise Assistant")
    session: ChatSession = st.session_state[SESSION_KEY_CHAT]

    for message in st.session_state[SESSION_KEY_MESSAGES]:
        render_message(message)

    ready = session.status is ConnectivityStatus.CONNECTED
    user_input = st.chat_input(
        "Ask about compliance, AFS payment gateway, or any enterprise question...",
        disabled=not ready,
    )
    if not user_input or not user_input.strip():
        return

    content = user_input.strip()
    user_message = {
        "role": "user",
        "content": content,
        "timestamp": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
    }
    st.session_state[SESSION_KEY_MESSAGES].append(user_message)
    render_message(user_message)

    with st.chat_message("assistant"):
        try:
            if st.session_state[SESSION_KEY_STREAMING]:
                reply = stream_reply(session, content)
            else:
                reply = batch_reply(session, content)
        except ChatError as e:
            logger.error("Chat request failed", extra={"error_type": type(e).__name__})
            reply = bot_message(
                f"Sorry, I encountered an error: {e}. Please try again.", is_error=True
            )

    st.session_state[SESSION_KEY_MESSAGES].append(reply)
    st.rerun()

# --------------------------------------------------------------------------- #
# entry point
# --------------------------------------------------------------------------- #
def main() -> None:
    st.set_page_config(page_title="Enterprise Chatbot", layout="wide")
    setup_logging()
    init_session_state()
    render_sidebar()
    run_chat()


if __name__ == "__main__":
    main()
