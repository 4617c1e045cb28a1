"""
Response schemas for the webhook endpoint.
"""

from pydantic import BaseModel, Field


class WebhookAck(BaseModel):
    """Acknowledgement returned before the event is processed."""

    received: bool = Field(default=True)
