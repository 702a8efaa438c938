import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class ORMBase(BaseModel):
    """Response schema populated from ORM rows via attribute access."""

    model_config = ConfigDict(from_attributes=True)


class TimestampedRead(ORMBase):
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
