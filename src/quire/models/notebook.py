import enum
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, DateTime, Enum, func
from quire.db.session import Base


class AudioStatus(str, enum.Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Notebook(Base):
    """A user's workspace grouping sources, chat history and notes.

    The audio overview (podcast) is a single per-notebook artifact, so its
    state lives on the notebook row rather than in a table of its own.
    """

    __tablename__ = "notebook"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    # Stable subject identifier supplied by the auth provider
    owner_id: Mapped[str] = mapped_column(String(255), index=True)
    title: Mapped[str] = mapped_column(String(255), default="Untitled notebook")

    audio_status: Mapped[AudioStatus | None] = mapped_column(Enum(AudioStatus, name="audio_status"), nullable=True)
    audio_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    audio_title: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
