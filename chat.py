# chat.py
#
# Description: A multi-turn terminal client for the compliance chat API.
# This script provides a stateful command-line chat interface on top of a
# ChatSession. It streams replies by default, supports special commands
# (e.g., :help, :history, :stream) and reports errors without crashing.

from __future__ import annotations  # allow postponed evaluation of annotations

import logging  # structured logging
import sys  # for system exit and input/output operations
from typing import Callable, Dict, Optional  # type hints for handlers

import typer

from api_client import ChatAPIClient
from connectivity import ConnectivityMonitor, ConnectivityStatus
from errors import ChatError, StreamInterrupted
from history import Role
from session import ChatSession, SendMode

# --------------------------------------------------------------------------- #
# logger setup
# --------------------------------------------------------------------------- #

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------------- #
# command handlers
# --------------------------------------------------------------------------- #

CommandHandler = Callable[["ChatApplication"], None]  # type alias for command handler functions

def handle_exit(app: "ChatApplication") -> None:
    """exit the chat application."""
    print("Goodbye!")  # inform user of exit
    sys.exit(0)  # terminate application

def handle_help(app: "ChatApplication") -> None:
    """display available commands to the user."""
    print("Available commands:")
    for cmd, (_, description) in COMMANDS.items():
        print(f"  {cmd:<10} - {description}")  # list each command and its description

def handle_history(app: "ChatApplication") -> None:
    """print the turns the next prompt will be seeded with.

    Args:
        app (ChatApplication): the running application.
    Returns:
        None.
    """
    turns = app.session.history.snapshot()
    if not turns:
        print("No messages in history yet.")  # no history to display
        return

    print("\n--- Chat History ---")
    for turn in turns:
        speaker = "You" if turn.role is Role.USER else "Assistant"
        suffix = " [incomplete]" if turn.incomplete else ""
        print(f"{speaker}: {turn.content}{suffix}")  # show each turn with speaker
    print("--- End History ---\n")

def handle_clear(app: "ChatApplication") -> None:
    """clear the current chat history."""
    app.session.clear_history()  # remove all history entries
    print("Chat history has been cleared.")  # notify user

def handle_stream(app: "ChatApplication") -> None:
    """toggle between streaming and batch replies."""
    app.mode = SendMode.BATCH if app.mode is SendMode.STREAMING else SendMode.STREAMING
    print(f"Reply mode: {app.mode.value}")

def handle_status(app: "ChatApplication") -> None:
    """re-run the connectivity checks and print the result."""
    status = app.session.check_connectivity()
    print(f"Connection status: {status.value}")

# --------------------------------------------------------------------------- #
# command mapping
# --------------------------------------------------------------------------- #

COMMANDS: Dict[str, tuple[CommandHandler, str]] = {
    ":exit":    (handle_exit,    "Exit the chat"),
    ":help":    (handle_help,    "Show this help message"),
    ":history": (handle_history, "Display conversation history"),
    ":clear":   (handle_clear,   "Clear all messages"),
    ":stream":  (handle_stream,  "Toggle streaming / batch replies"),
    ":status":  (handle_status,  "Re-check the connection"),
}

# --------------------------------------------------------------------------- #
# main chat application class
# --------------------------------------------------------------------------- #

class ChatApplication:
    """encapsulates the state and logic of the multi-turn chat loop."""

    def __init__(self, session: ChatSession, mode: SendMode = SendMode.STREAMING) -> None:
        self.session = session
        self.mode = mode

    def run(self) -> None:
        """start the REPL loop, handle commands or pass messages to the session."""
        print("Welcome to Chat! Type ':help' for commands, or ':exit' to quit.\n")  # greet user
        status = self.session.check_connectivity()
        if status is not ConnectivityStatus.CONNECTED:
            print(f"[SYSTEM] Not connected ({status.value}). Use ':status' to retry.")

        while True:
            try:
                user_input = input("You: ").strip()  # prompt for user input
                if not user_input:
                    continue  # ignore empty input

                cmd = user_input.lower()  # normalize for command lookup
                if cmd in COMMANDS:
                    handler, _ = COMMANDS[cmd]  # find handler
                    handler(self)  # execute command
                else:
                    self.process_message(user_input)  # handle as chat message

            except (KeyboardInterrupt, EOFError):
                handle_exit(self)  # exit gracefully on interrupt

    def process_message(self, text: str) -> None:
        """
        send a user message and print the reply. The session records the
        exchange; on failure nothing is recorded except text already shown.

        Args:
            text (str): user input message.
        """
        print("Assistant: ", end="", flush=True)
        try:
            if self.mode is SendMode.STREAMING:
                for chunk in self.session.send(text, SendMode.STREAMING):
                    print(chunk, end="", flush=True)
                print()
            else:
                result = self.session.send(text, SendMode.BATCH)
                print(result.text)
                print(f"(tokens: {result.usage.total_tokens})")
        except StreamInterrupted:
            print("\n[SYSTEM] partial response, terminated early.")
        except ChatError as e:
            print(f"\n[SYSTEM] Error: could not get a response. {e}")  # show error to user
            logger.error("Chat request failed", extra={"error_type": type(e).__name__})

# --------------------------------------------------------------------------- #
# entry point
# --------------------------------------------------------------------------- #

def main(
    api_url: Optional[str] = typer.Option(None, help="Backend API base URL."),
    batch: bool = typer.Option(False, "--batch", help="Start in batch (non-streaming) mode."),
) -> None:
    """entry point for the chat application."""
    session = ChatSession(ChatAPIClient(api_url), monitor=ConnectivityMonitor(api_url))
    app = ChatApplication(session, SendMode.BATCH if batch else SendMode.STREAMING)
    app.run()


def run() -> None:
    typer.run(main)


if __name__ == "__main__":
    run()  # run application when executed as script
