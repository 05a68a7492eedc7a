"""Wire models for the persistent event channel.

Every message is a JSON object ``{"event": <name>, "data": {...}}``.
Payload keys are camelCase on the wire and snake_case in Python.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from knowledge_hub.documents.lifecycle import LifecycleEvent
from knowledge_hub.documents.models import Document, DocumentStatus

# Client → server
JOIN_DOCUMENTS = "join_documents"
LEAVE_DOCUMENTS = "leave_documents"
JOIN_CONVERSATION = "join_conversation"
LEAVE_CONVERSATION = "leave_conversation"
TYPING_START = "typing_start"
TYPING_STOP = "typing_stop"

# Server → client
DOCUMENT_UPLOADED = "document_uploaded"
DOCUMENT_STATUS_UPDATE = "document_status_update"
DOCUMENT_PROCESSED = "document_processed"
DOCUMENT_DELETED = "document_deleted"
USER_TYPING_START = "user_typing_start"
USER_TYPING_STOP = "user_typing_stop"


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class DocumentUploaded(_Payload):
    document: Document


class DocumentStatusUpdate(_Payload):
    document_id: str = Field(alias="documentId")
    status: DocumentStatus
    metadata: dict[str, Any] | None = None


class DocumentProcessed(_Payload):
    document_id: str = Field(alias="documentId")
    chunks: int
    processing_time: float = Field(alias="processingTime")
    metadata: dict[str, Any] | None = None


class DocumentDeleted(_Payload):
    document_id: str = Field(alias="documentId")


class ConversationRef(_Payload):
    conversation_id: str = Field(alias="conversationId")


class UserTypingStart(_Payload):
    user_id: str = Field(alias="userId")
    user_name: str = Field(alias="userName")
    conversation_id: str = Field(alias="conversationId")


class UserTypingStop(_Payload):
    user_id: str = Field(alias="userId")
    conversation_id: str = Field(alias="conversationId")


PAYLOADS: dict[str, type[_Payload]] = {
    DOCUMENT_UPLOADED: DocumentUploaded,
    DOCUMENT_STATUS_UPDATE: DocumentStatusUpdate,
    DOCUMENT_PROCESSED: DocumentProcessed,
    DOCUMENT_DELETED: DocumentDeleted,
    USER_TYPING_START: UserTypingStart,
    USER_TYPING_STOP: UserTypingStop,
    JOIN_CONVERSATION: ConversationRef,
    LEAVE_CONVERSATION: ConversationRef,
    TYPING_START: ConversationRef,
    TYPING_STOP: ConversationRef,
}


def encode(event: str, payload: BaseModel | dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a wire message for *event*."""
    if isinstance(payload, BaseModel):
        data = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
    else:
        data = dict(payload or {})
    return {"event": event, "data": data}


def decode(message: dict[str, Any]) -> tuple[str, Any]:
    """Split a wire message into its name and typed payload.

    Events without a registered payload model come back with their raw
    ``data`` dict.

    Raises
    ------
    ValueError
        If the message has no event name or the payload is malformed.
    """
    event = message.get("event")
    if not isinstance(event, str) or not event:
        raise ValueError(f"Message has no event name: {message!r}")
    data = message.get("data") or {}
    model = PAYLOADS.get(event)
    if model is None:
        return event, data
    return event, model.model_validate(data)


def from_lifecycle(event: LifecycleEvent) -> tuple[str, BaseModel]:
    """Translate a lifecycle notification into the broadcast message."""
    doc = event.document
    if event.kind == "created":
        return DOCUMENT_UPLOADED, DocumentUploaded(document=doc)
    if event.kind == "processed":
        return DOCUMENT_PROCESSED, DocumentProcessed(
            document_id=doc.id,
            chunks=event.details["chunks"],
            processing_time=event.details["processingTime"],
            metadata={k: v for k, v in event.details.items() if k not in ("chunks", "processingTime")} or None,
        )
    if event.kind == "deleted":
        return DOCUMENT_DELETED, DocumentDeleted(document_id=doc.id)
    return DOCUMENT_STATUS_UPDATE, DocumentStatusUpdate(document_id=doc.id, status=doc.status, metadata=doc.metadata)


@dataclass(frozen=True)
class Scope:
    """A named subscription scope on the shared channel."""

    kind: str
    id: str | None = None

    @classmethod
    def documents(cls) -> Scope:
        return cls("documents")

    @classmethod
    def conversation(cls, conversation_id: str) -> Scope:
        return cls("conversation", conversation_id)

    @property
    def name(self) -> str:
        return self.kind if self.id is None else f"{self.kind}:{self.id}"

    def join_message(self) -> dict[str, Any]:
        if self.kind == "documents":
            return encode(JOIN_DOCUMENTS)
        return encode(JOIN_CONVERSATION, ConversationRef(conversation_id=self.id))

    def leave_message(self) -> dict[str, Any]:
        if self.kind == "documents":
            return encode(LEAVE_DOCUMENTS)
        return encode(LEAVE_CONVERSATION, ConversationRef(conversation_id=self.id))
