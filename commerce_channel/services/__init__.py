from commerce_channel.services.conversation_service import (
    append_message,
    find_latest_conversation,
    get_attention_flag,
    update_gateway_sid,
)
from commerce_channel.services.state_machine import (
    AttentionDecision,
    AttentionMode,
    decide,
)

__all__ = [
    "append_message",
    "find_latest_conversation",
    "get_attention_flag",
    "update_gateway_sid",
    "AttentionDecision",
    "AttentionMode",
    "decide",
]
