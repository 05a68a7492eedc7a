"""Domain models for documents, their chunks, and pending client uploads."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field

TEMP_ID_PREFIX = "temp-"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_temporary_id(document_id: str) -> bool:
    """Return ``True`` for client-assigned placeholder ids."""
    return document_id.startswith(TEMP_ID_PREFIX)


class DocumentStatus(str, Enum):
    """Ingestion phase of a document.

    ``READY`` and ``ERROR`` are terminal.
    """

    UPLOADING = "UPLOADING"
    PROCESSING = "PROCESSING"
    READY = "READY"
    ERROR = "ERROR"

    @property
    def terminal(self) -> bool:
        return self in (DocumentStatus.READY, DocumentStatus.ERROR)


class Document(BaseModel):
    """A tenant document as seen by the lifecycle engine and by clients.

    Field names are snake_case in Python and camelCase on the wire
    (``agentId``, ``createdAt``, ``updatedAt``).

    Attributes
    ----------
    id:
        Server-assigned id, or a ``temp-`` prefixed placeholder on clients.
    name:
        Original file name.
    size:
        Byte size of the uploaded file.
    type:
        Declared MIME type.
    status:
        Current :class:`DocumentStatus`.
    agent_id:
        Optional owning agent.
    metadata:
        Free-form metadata (``chunks``, ``processingTime``, ``provider``, …).
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str
    size: int = 0
    type: str = "application/octet-stream"
    status: DocumentStatus = DocumentStatus.UPLOADING
    agent_id: str | None = Field(default=None, alias="agentId")
    tenant_id: str | None = Field(default=None, alias="tenantId")
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class PendingUpload(BaseModel):
    """Client-local placeholder shown while a direct upload is in flight."""

    document: Document

    @property
    def temp_id(self) -> str:
        return self.document.id


class Chunk(BaseModel):
    """A contiguous slice of a document's text.

    ``start`` is the character offset of the slice within the source text,
    which lets consecutive overlapping chunks be stitched back together.
    """

    document_id: str | None = None
    index: int
    start: int = 0
    text: str

    @computed_field  # type: ignore[prop-decorator]
    @property
    def char_length(self) -> int:
        return len(self.text)

    @property
    def chunk_id(self) -> str:
        return f"{self.document_id or 'adhoc'}_{self.index}"
