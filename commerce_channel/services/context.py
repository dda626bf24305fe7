from dataclasses import dataclass, field
from typing import Optional

from commerce_channel.logging_config import LoggerAdapter, get_logger
from commerce_channel.services.advisor_service import AdvisorInfo


@dataclass
class RequestContext:
    """Routing data for one inbound webhook, passed explicitly through the pipeline."""

    client_number: str
    gateway_number: str
    advisor: AdvisorInfo
    inbound_sid: Optional[str] = None
    origin: str = "organic"
    logger: LoggerAdapter = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.logger = LoggerAdapter(
            get_logger("pipeline"),
            {
                "client_number": self.client_number,
                "advisor_id": str(self.advisor.id),
                "message_sid": self.inbound_sid,
            },
        )

    @property
    def advisor_id(self):
        return self.advisor.id

    @property
    def thread_id(self) -> str:
        """Agent memory is partitioned per advisor and client."""
        return f"{self.advisor.id}_{self.client_number}"
