import enum
import uuid
from datetime import datetime, timezone
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import ForeignKey, Text, DateTime, Enum
from quire.db.session import Base


class Sender(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatMessage(Base):
    """One append-only turn of a notebook conversation."""
    __tablename__ = "chat_message"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    notebook_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("notebook.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender: Mapped[Sender] = mapped_column(Enum(Sender, name="message_sender"))
    message: Mapped[str] = mapped_column(Text, default="")
    # Python-side default: server clocks on some backends only keep seconds,
    # and ordering within a conversation needs sub-second resolution.
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
