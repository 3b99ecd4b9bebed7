"""Password reset request model."""

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from speaksmart.models.document import DocumentModel


class ResetStatus(StrEnum):
    """Password reset request states."""

    PENDING = "pending"
    APPROVED = "approved"
    PASSWORD_RESET_SENT = "password_reset_sent"


class PasswordResetRequest(DocumentModel):
    id: str | None = Field(default=None, exclude=True)
    email: str
    requested_at: datetime | None = None
    status: ResetStatus = ResetStatus.PENDING
    approved: bool = False
    admin_read: bool = False
    new_password_to_set: str | None = None
    approved_at: datetime | None = None
    read_at: datetime | None = None
    password_reset_sent_at: datetime | None = None
