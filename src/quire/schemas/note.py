import uuid
from pydantic import BaseModel, Field
from .base import TimestampedRead
from quire.models.note import NoteStatus, NoteType


class NoteCreate(BaseModel):
    """Trigger for note or mind-map generation.

    ``note`` is the instruction text; mind maps also need the sources to map.
    """

    note: str = ""
    type: NoteType = NoteType.TEXT
    source_ids: list[uuid.UUID] = Field(default_factory=list)


class NoteRead(TimestampedRead):
    notebook_id: uuid.UUID
    title: str | None
    content: str | None
    status: NoteStatus
    type: NoteType
    error: str | None
