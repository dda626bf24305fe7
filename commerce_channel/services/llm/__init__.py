from commerce_channel.services.llm.base import ReplyGenerator, ReplyRequest
from commerce_channel.services.llm.openai_provider import OpenAIReplyGenerator

__all__ = ["ReplyGenerator", "ReplyRequest", "OpenAIReplyGenerator"]
