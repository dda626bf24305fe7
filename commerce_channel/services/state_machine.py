from dataclasses import dataclass
from enum import Enum
from typing import Optional

from commerce_channel.logging_config import get_logger

logger = get_logger("state_machine")


class AttentionMode(str, Enum):
    HUMAN = "human"
    AI = "ai"
    UNKNOWN = "unknown"


class DecisionReason(str, Enum):
    HUMAN_ATTENTION = "human_attention"
    UNKNOWN_ATTENTION = "unknown_attention"
    EMPTY_MESSAGE = "empty_message"
    AI_ATTENTION = "ai_attention"


@dataclass(frozen=True)
class AttentionDecision:
    mode: AttentionMode
    invoke_agent: bool
    reason: DecisionReason


def attention_mode(chat_on: Optional[bool]) -> AttentionMode:
    """Map the tri-state `chat_on` flag: True human, False AI, None unknown."""
    if chat_on is None:
        return AttentionMode.UNKNOWN
    return AttentionMode.HUMAN if chat_on else AttentionMode.AI


def decide(chat_on: Optional[bool], incoming_text: Optional[str]) -> AttentionDecision:
    """Decide whether the automated agent answers this message."""
    mode = attention_mode(chat_on)

    if mode == AttentionMode.HUMAN:
        return AttentionDecision(mode, False, DecisionReason.HUMAN_ATTENTION)

    if mode == AttentionMode.UNKNOWN:
        logger.warning("Attention flag is unknown, not invoking agent")
        return AttentionDecision(mode, False, DecisionReason.UNKNOWN_ATTENTION)

    if not (incoming_text or "").strip():
        return AttentionDecision(mode, False, DecisionReason.EMPTY_MESSAGE)

    return AttentionDecision(mode, True, DecisionReason.AI_ATTENTION)
