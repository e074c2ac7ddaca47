"""Document lifecycle data models."""

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from bilags.extraction.schema import Extraction
from bilags.proposal.schema import Proposal


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStatus(str, Enum):
    """Lifecycle states.

    RECEIVED -> PARSED -> READY/ROUTED -> POSTED. There is no failure state;
    failures degrade the extracted data instead.
    """

    RECEIVED = "RECEIVED"
    PARSED = "PARSED"
    READY = "READY"
    ROUTED = "ROUTED"
    POSTED = "POSTED"


class StoredFile(BaseModel):
    filename: str
    stored_as: str
    mimetype: str | None = None
    size: int = 0


class SourceInfo(BaseModel):
    subject: str = ""
    from_address: str = ""
    message_id: str = ""
    files: list[StoredFile] = Field(default_factory=list)
    received_at: datetime = Field(default_factory=utcnow)


class Links(BaseModel):
    """Identifiers returned by the ledger and inventory once the proposal is committed."""

    journal_id: str | None = None
    stock_move_ids: list[str] = Field(default_factory=list)


class IngestedDocument(BaseModel):
    """The unit of work owned by the lifecycle controller."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    type: str = "invoice"
    status: DocumentStatus = DocumentStatus.RECEIVED
    source: SourceInfo = Field(default_factory=SourceInfo)
    extracted: Extraction | None = None
    proposal: Proposal | None = None
    links: Links = Field(default_factory=Links)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class FetchCriteria(BaseModel):
    """Filters for one mail fetch run."""

    subject: str = ""
    from_contains: str = ""
    include_seen: bool = True
    limit: int = Field(50, ge=1)


class BatchReport(BaseModel):
    """Counters for one mail fetch run."""

    scanned: int = 0
    parsed: int = 0
    skipped_no_match: int = 0
    skipped_no_files: int = 0
    skipped_duplicate: int = 0
    skipped_no_stream: int = 0
    failed: int = 0
    document_ids: list[str] = Field(default_factory=list)

    @property
    def imported(self) -> int:
        return len(self.document_ids)
