import uuid
from pydantic import BaseModel, Field, field_validator
from .base import TimestampedRead
from quire.models.source import SourceStatus, SourceType


class SourceRead(TimestampedRead):
    notebook_id: uuid.UUID
    title: str
    type: SourceType
    url: str
    mime_type: str | None
    status: SourceStatus
    error: str | None


class TextSourceCreate(BaseModel):
    text: str

    @field_validator("text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("text must not be empty")
        return value


class UrlSourceCreate(BaseModel):
    """Website or YouTube source."""

    url: str = Field(min_length=1, max_length=2048)

    @field_validator("url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return value


class DiscoveredSource(BaseModel):
    title: str | None = Field(default=None, max_length=255)
    url: str

    @field_validator("url")
    @classmethod
    def _https_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith("https://"):
            raise ValueError("discovered sources must use https")
        return value


class DiscoveredSourcesCreate(BaseModel):
    sources: list[DiscoveredSource] = Field(min_length=1)


class SourceUpdate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
