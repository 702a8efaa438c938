import enum
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, DateTime, Enum, func, ForeignKey
from quire.db.session import Base


class NoteStatus(str, enum.Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class NoteType(str, enum.Enum):
    TEXT = "TEXT"
    MIND_MAP = "MIND_MAP"


class Note(Base):
    """Generated artifact attached to a notebook.

    Created as a PROCESSING placeholder, filled in by the note generation job.
    For mind maps ``content`` is a serialized node/edge graph.
    """

    __tablename__ = "note"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    notebook_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("notebook.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[NoteStatus] = mapped_column(Enum(NoteStatus, name="note_status"), default=NoteStatus.PROCESSING)
    type: Mapped[NoteType] = mapped_column(Enum(NoteType, name="note_type"), default=NoteType.TEXT)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
