from typing import Optional

import httpx

from commerce_channel.config import settings
from commerce_channel.logging_config import get_logger
from commerce_channel.services.llm.base import ReplyGenerator, ReplyRequest

logger = get_logger("llm.openai")


class OpenAIReplyGenerator(ReplyGenerator):
    """Chat-completions backed reply generator (text or image input)."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        system_prompt: Optional[str] = None,
        timeout_seconds: float = 60.0,
    ):
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.model = model or settings.reply_model
        self.base_url = base_url or settings.openai_chat_url
        self.system_prompt = system_prompt
        self.timeout_seconds = timeout_seconds

    def build_messages(self, request: ReplyRequest) -> list[dict]:
        messages: list[dict] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend(request.history)
        if request.image_data_url:
            content: list[dict] = [{"type": "image_url", "image_url": {"url": request.image_data_url}}]
            if request.text:
                content.insert(0, {"type": "text", "text": request.text})
            messages.append({"role": "user", "content": content})
        else:
            messages.append({"role": "user", "content": request.text})
        return messages

    async def generate_reply(self, request: ReplyRequest) -> Optional[str]:
        payload = {
            "model": self.model,
            "messages": self.build_messages(request),
            "user": request.thread_id,
        }
        logger.debug(f"OpenAI request: model={self.model}, thread={request.thread_id}")

        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(
                self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )

        if response.status_code != 200:
            logger.error(f"OpenAI error: {response.text[:300]}")
            raise RuntimeError(f"OpenAI API error: {response.status_code}")

        data = response.json()
        choices = data.get("choices") or []
        if not choices:
            return None
        content = (choices[0].get("message") or {}).get("content")
        if not isinstance(content, str) or not content.strip():
            return None
        return content
