import enum
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, ForeignKey, Text, DateTime, Enum, func
from quire.db.session import Base


class SourceType(str, enum.Enum):
    FILE = "file"
    WEBSITE = "website"
    YOUTUBE = "youtube"
    TEXT = "text"


class SourceStatus(str, enum.Enum):
    UPLOADING = "UPLOADING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Source(Base):
    """One ingested unit of material.

    The row holds no content: the extracted text lives only as chunks in the
    vector index, addressed by ``metadata.sourceId``. ``status`` is written
    exclusively through :mod:`quire.services.source`.
    """

    __tablename__ = "source"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    notebook_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("notebook.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), default="")
    type: Mapped[SourceType] = mapped_column(Enum(SourceType, name="source_type"))
    # Storage URL for files, the page / video URL otherwise, "text://<id>" for pasted text
    url: Mapped[str] = mapped_column(String(2048), default="")
    mime_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[SourceStatus] = mapped_column(
        Enum(SourceStatus, name="source_status"), default=SourceStatus.UPLOADING, index=True
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
