"""Project-wide custom exceptions.

This module centralizes domain-specific exception types so that routers,
services and workflow steps can raise / catch them without importing deep
infrastructure errors (``pymilvus``, ``openai``, ``pypdf`` ...).

Two families matter to the workflow engine:

* ``TransientError`` subclasses are retried with backoff up to the configured
  attempt bound.
* Every other ``QuireError`` is terminal for the step that raised it.

Add new errors here rather than scattering small ``class XError(Exception):``
definitions across the codebase; this keeps the public error surface easy to
audit and map to HTTP responses.
"""
from __future__ import annotations

import uuid


class QuireError(Exception):
    """Base class for all custom project exceptions.

    Subclass this rather than ``Exception`` directly for new domain errors.
    """


class TransientError(QuireError):
    """Failure expected to clear on retry (network, timeout, rate limit)."""


class UnsupportedContentType(QuireError):
    def __init__(self, content_type: str | None):
        self.content_type = content_type or "<unknown>"
        super().__init__(f"Unsupported content type: {self.content_type}")


class ExtractionFailed(QuireError):
    """Fetching or parsing a source's raw material failed.

    ``transient`` is set when the underlying cause was a network or timeout
    error, in which case the step is retried before the source is failed.
    """

    def __init__(self, source_id: uuid.UUID | str | None, cause: BaseException | str, *, transient: bool = False):
        self.source_id = str(source_id) if source_id else None
        self.cause = cause
        self.transient = transient
        super().__init__(f"Extraction failed for source {self.source_id}: {cause}")


class TranscriptUnavailable(ExtractionFailed):
    """The video has no captions in the requested language."""

    def __init__(self, source_id: uuid.UUID | str | None, video_id: str):
        self.video_id = video_id
        super().__init__(source_id, f"no transcript available for video {video_id}")


class ChunkMetadataError(QuireError):
    """A chunk or filter lacks the mandatory sourceId/userId/notebookId scope."""


class VectorIndexUnavailable(TransientError):
    pass


class ModelUnavailable(TransientError):
    pass


class GenerationFailed(QuireError):
    """The language model answered but the output is unusable (e.g. empty)."""


class ScriptParseError(GenerationFailed):
    def __init__(self, reason: str, raw: str | None = None):
        self.raw = raw
        super().__init__(f"Podcast script could not be parsed: {reason}")


class NoSourcesSelected(QuireError):
    def __init__(self):
        super().__init__("At least one source must be selected")


class InvalidStatusTransition(QuireError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Illegal source status transition {current} -> {target}")


class UnknownWorkflowEvent(QuireError):
    def __init__(self, event: str):
        self.event = event
        super().__init__(f"No workflow function subscribed to event '{event}'")


class DiscoveryUnavailable(QuireError):
    """The external web search service is not configured or failed."""


__all__ = [
    "QuireError",
    "TransientError",
    "UnsupportedContentType",
    "ExtractionFailed",
    "TranscriptUnavailable",
    "ChunkMetadataError",
    "VectorIndexUnavailable",
    "ModelUnavailable",
    "GenerationFailed",
    "ScriptParseError",
    "NoSourcesSelected",
    "InvalidStatusTransition",
    "UnknownWorkflowEvent",
    "DiscoveryUnavailable",
]
