"""Mail domain models"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FolderName(str, Enum):
    """Canonical folder buckets, independent of server naming."""

    INBOX = "INBOX"
    SENT = "Sent"
    DRAFTS = "Drafts"
    TRASH = "Trash"
    JUNK = "Junk"

    @classmethod
    def from_string(cls, value: str) -> "FolderName":
        """Create FolderName from string, ignoring case.

        Args:
            value (str): The folder name as a string.

        Returns:
            FolderName: The corresponding FolderName enum value.

        Raises:
            ValueError: If the folder name is invalid.
        """
        for folder in cls:
            if folder.value.lower() == value.strip().lower():
                return folder

        raise ValueError(f"Invalid folder name: {value}")


class Attachment(BaseModel):
    """Attachment metadata; content is never mirrored."""

    name: Optional[str] = None
    mime_type: str = "application/octet-stream"
    size: int = 0
    inline: bool = False
    content_id: Optional[str] = None


class Message(BaseModel):
    """A mail item as mirrored locally.

    Dates are stored as timezone-aware UTC values so that equality and the
    fingerprint text do not depend on the offset the server reported.
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    sender: Optional[str] = Field(default=None, alias="from")
    to: List[str] = Field(default_factory=list)
    cc: List[str] = Field(default_factory=list)
    bcc: List[str] = Field(default_factory=list)
    subject: Optional[str] = None
    body: Optional[str] = None
    is_html: bool = False
    sent_date: Optional[datetime] = None
    received_date: Optional[datetime] = None
    attachments: List[Attachment] = Field(default_factory=list)
    message_id: Optional[str] = None
    read: bool = False
    tags: Set[str] = Field(default_factory=set)

    @field_validator("sent_date", "received_date")
    @classmethod
    def _normalise_to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def mark_as_read(self) -> None:
        """Mark message as read."""
        self.read = True

    def mark_as_unread(self) -> None:
        """Mark message as unread."""
        self.read = False

    def has_attachments(self) -> bool:
        """Check if message has non-inline attachments."""
        return any(not a.inline for a in self.attachments)

    def get_preview(self, max_length: int = 100) -> str:
        """Get a plain-text preview of the body."""
        if not self.body:
            return ""

        import re

        text = re.sub(r"<[^>]+>", "", self.body) if self.is_html else self.body
        text = " ".join(text.split())

        if len(text) <= max_length:
            return text

        return text[: max_length - 3] + "..."

    def to_dict(self) -> dict:
        """Convert to the JSON-ready dictionary used by the mirror documents."""
        return self.model_dump(mode="json", by_alias=True)
