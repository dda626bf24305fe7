from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ReplyRequest:
    text: str
    thread_id: str
    client_number: str
    advisor_id: Optional[str] = None
    image_data_url: Optional[str] = None
    history: list[dict] = field(default_factory=list)


class ReplyGenerator(ABC):
    """The automated agent, seen from the channel as an opaque reply source."""

    @abstractmethod
    async def generate_reply(self, request: ReplyRequest) -> Optional[str]:
        """Return the reply text, or None when the agent produced nothing usable."""
        pass
