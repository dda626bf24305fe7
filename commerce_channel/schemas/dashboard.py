from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class DashboardMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_number: str = Field(alias="clientNumber")
    new_message: str = Field(alias="newMessage")
    user_name: str = Field(alias="userName")
    file_name: Optional[str] = Field(default=None, alias="fileName")
    advisor_id: Optional[UUID] = Field(default=None, alias="advisorId")
    gateway_number: str = Field(alias="gatewayNumber")


class SendResponse(BaseModel):
    success: bool
    message: str
    sid: Optional[str] = None
