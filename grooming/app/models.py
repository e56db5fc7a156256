from typing import Optional

from pydantic import BaseModel

from grooming.models.calendar import ConnectionStatus
from .env_loader import EnvironmentName


class EnvironmentResponse(BaseModel):
    environment: EnvironmentName


class ConnectionResponse(BaseModel):
    """Whether a calendar is connected and, if so, its public status."""

    connected: bool
    connection: Optional[ConnectionStatus] = None


class AuthorizeResponse(BaseModel):
    authorization_url: str


class WebhookAck(BaseModel):
    status: str
    job_id: Optional[str] = None
