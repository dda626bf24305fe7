from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class TemplateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to: str
    template_id: str = Field(alias="templateId")
    name: str
    agent_name: str = Field(alias="agentName")
    user: str
    advisor_id: Optional[UUID] = Field(default=None, alias="advisorId")
    gateway_number: str = Field(alias="gatewayNumber")
