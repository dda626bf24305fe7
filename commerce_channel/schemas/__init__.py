from commerce_channel.schemas.dashboard import DashboardMessageRequest, SendResponse
from commerce_channel.schemas.status import MessageStatusResponse
from commerce_channel.schemas.template import TemplateRequest

__all__ = ["DashboardMessageRequest", "SendResponse", "TemplateRequest", "MessageStatusResponse"]
