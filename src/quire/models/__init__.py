"""ORM models; importing this package registers every table on ``Base.metadata``."""

from quire.models.notebook import Notebook, AudioStatus
from quire.models.source import Source, SourceStatus, SourceType
from quire.models.note import Note, NoteStatus, NoteType
from quire.models.message import ChatMessage, Sender
from quire.models.job import Job, JobStep, JobStatus

__all__ = [
    "Notebook",
    "AudioStatus",
    "Source",
    "SourceStatus",
    "SourceType",
    "Note",
    "NoteStatus",
    "NoteType",
    "ChatMessage",
    "Sender",
    "Job",
    "JobStep",
    "JobStatus",
]
