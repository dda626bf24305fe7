from commerce_channel.models.advisor import Advisor
from commerce_channel.models.client_profile import ClientProfile
from commerce_channel.models.conversation import Conversation
from commerce_channel.models.message import Message
from commerce_channel.models.message_status_history import MessageStatusHistory

__all__ = [
    "Advisor",
    "ClientProfile",
    "Conversation",
    "Message",
    "MessageStatusHistory",
]
