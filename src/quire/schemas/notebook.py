from pydantic import BaseModel, Field
from .base import TimestampedRead
from quire.models.notebook import AudioStatus


class NotebookCreate(BaseModel):
    title: str | None = Field(default=None, max_length=255)


class NotebookUpdate(BaseModel):
    title: str = Field(min_length=1, max_length=255)


class NotebookRead(TimestampedRead):
    title: str
    audio_status: AudioStatus | None
    audio_url: str | None
    audio_title: str | None
