"""Parsing of raw RFC 822 messages into subject, sender and attachments."""

import email
import logging
import re
import time
from datetime import datetime
from email.policy import default as default_policy
from email.utils import parsedate_to_datetime

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

IMAGE_NAME = re.compile(r"\.(png|jpe?g|tiff?|bmp|gif|webp)$", re.IGNORECASE)
UNSAFE_NAME_CHARS = re.compile(r"[^\w.-]+")


class Attachment(BaseModel):
    filename: str = ""
    content_type: str = "application/octet-stream"
    content: bytes = b""

    @property
    def kind(self) -> str | None:
        """'pdf', 'image', 'text' or None for attachments we cannot read."""
        ct = self.content_type.lower()
        name = self.filename.lower()
        if "pdf" in ct or name.endswith(".pdf"):
            return "pdf"
        if ct.startswith("image/") or IMAGE_NAME.search(name):
            return "image"
        if ct.startswith("text/") or name.endswith(".txt"):
            return "text"
        return None

    def safe_name(self, now: float | None = None) -> str:
        """Filename restricted to ``[\\w.-]``; nameless attachments get a timestamped name."""
        name = self.filename.strip()
        if not name:
            ext = {"pdf": ".pdf", "image": ".img"}.get(self.kind or "", ".txt")
            name = f"attachment-{int((now or time.time()) * 1000)}{ext}"
        return UNSAFE_NAME_CHARS.sub("_", name)


class ParsedMessage(BaseModel):
    subject: str = ""
    from_address: str = ""
    message_id: str = ""
    date: datetime | None = None
    attachments: list[Attachment] = Field(default_factory=list)


def parse_message(raw: bytes) -> ParsedMessage:
    """Parse raw message bytes.

    Args:
        raw: Full RFC 822 message

    Returns:
        ParsedMessage with decoded headers and every attachment part
    """
    msg = email.message_from_bytes(raw, policy=default_policy)

    received: datetime | None = None
    if msg["Date"]:
        try:
            received = parsedate_to_datetime(str(msg["Date"]))
        except (TypeError, ValueError):
            logger.debug(f"Unparseable Date header: {msg['Date']!r}")

    attachments: list[Attachment] = []
    for part in msg.walk():
        if part.is_multipart():
            continue
        filename = part.get_filename() or ""
        if part.get_content_disposition() != "attachment" and not filename:
            continue
        payload = part.get_payload(decode=True) or b""
        attachments.append(
            Attachment(
                filename=filename,
                content_type=part.get_content_type(),
                content=payload,
            )
        )

    return ParsedMessage(
        subject=str(msg["Subject"] or ""),
        from_address=str(msg["From"] or ""),
        message_id=str(msg["Message-ID"] or "").strip(),
        date=received,
        attachments=attachments,
    )
