import uuid
from pydantic import BaseModel, Field
from quire.models.notebook import AudioStatus


class AudioOverviewCreate(BaseModel):
    source_ids: list[uuid.UUID] = Field(default_factory=list)


class AudioOverviewAccepted(BaseModel):
    notebook_id: uuid.UUID
    audio_status: AudioStatus
    job_ids: list[uuid.UUID]
