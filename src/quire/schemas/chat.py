import uuid
from datetime import datetime
from pydantic import BaseModel, Field
from .base import ORMBase
from quire.models.message import Sender


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    source_ids: list[uuid.UUID] = Field(default_factory=list)


class ChatMessageRead(ORMBase):
    id: uuid.UUID
    notebook_id: uuid.UUID
    sender: Sender
    message: str
    created_at: datetime


class ChatResponse(BaseModel):
    answer: str
    question: ChatMessageRead
    response: ChatMessageRead
