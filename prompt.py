# prompt.py
#
# Description: Assembles the ordered message sequence sent to the completion
#              provider: one system instruction, the bounded history in
#              chronological order, then the new user message.
#

# --------------------------------------------------------------------------- #
# imports
# --------------------------------------------------------------------------- #
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from errors import InvalidInput
from history import History, Role, Turn

# --------------------------------------------------------------------------- #
# constants
# --------------------------------------------------------------------------- #
SYSTEM_INSTRUCTION = """
You are an expert Enterprise Compliance and AFS Payment Gateway Assistant. You have comprehensive knowledge in:

1. COMPLIANCE AREAS:
- Anti-Money Laundering (AML) regulations
- Know Your Customer (KYC) requirements
- Payment Card Industry Data Security Standard (PCI DSS)
- General Data Protection Regulation (GDPR)
- SOX compliance requirements
- Financial services regulations

2. AFS APEX V2 PAYMENT GATEWAY:
- Payment processing workflows
- API integration methods
- Security protocols and encryption
- Transaction monitoring and reporting
- Error handling and troubleshooting
- Merchant onboarding procedures

Always provide detailed, accurate responses based on current regulatory requirements and best practices.
""".strip()

# --------------------------------------------------------------------------- #
# prompt request
# --------------------------------------------------------------------------- #
@dataclass(frozen=True)
class PromptRequest:
    """System turn, then history, then the new user turn. Length is history + 2."""
    system: Turn
    history: History
    user: Turn

    @property
    def turns(self) -> Tuple[Turn, ...]:
        return (self.system, *self.history, self.user)

    def to_messages(self) -> List[Dict[str, str]]:
        return [turn.to_dict() for turn in self.turns]

    def __len__(self) -> int:
        return len(self.history) + 2


def build_prompt(
    system_instruction: Optional[str],
    history: Iterable[Turn],
    user_message: Optional[str],
) -> PromptRequest:
    """
    Builds the request for one conversation turn.

    Args:
        system_instruction: Instruction placed first; falls back to
            SYSTEM_INSTRUCTION when blank.
        history: Prior turns, oldest first (usually HistoryBuffer.snapshot()).
        user_message: The new message. Must contain non-whitespace text.

    Raises:
        InvalidInput: If the user message is missing, empty or whitespace-only.
    """
    if not isinstance(user_message, str) or not user_message.strip():
        raise InvalidInput("Message is required")

    instruction = system_instruction if system_instruction and system_instruction.strip() else SYSTEM_INSTRUCTION
    return PromptRequest(
        system=Turn(Role.SYSTEM, instruction),
        history=tuple(history),
        user=Turn(Role.USER, user_message),
    )
