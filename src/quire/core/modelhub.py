"""ModelHub client helpers.

Centralizes construction of the OpenAI-compatible client and the three model
capabilities the pipeline consumes: embeddings, chat generation and speech.
Provider exceptions are translated here so callers only see
:class:`~quire.core.errors.ModelUnavailable` (retryable) or
:class:`~quire.core.errors.GenerationFailed` (terminal).
"""

from __future__ import annotations

import abc
import hashlib
import logging
import time
from typing import List, Sequence
from uuid import uuid4

import openai
from openai import AsyncOpenAI

from .config import Settings
from .errors import GenerationFailed, ModelUnavailable

logger = logging.getLogger("quire.modelhub")

EMBEDDING_BATCH_SIZE = 100

_RETRYABLE = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class ModelHubUnavailable(RuntimeError):
    """Raised when a model hub client cannot be constructed due to config."""


def build_modelhub_client(settings: Settings) -> AsyncOpenAI:
    """Return an async OpenAI-compatible client, raising if credentials are missing."""
    if not (settings.modelhub_api_key and settings.modelhub_base_url):
        raise ModelHubUnavailable("OpenAI client is not configured (missing credentials or base URL).")
    return AsyncOpenAI(
        api_key=settings.modelhub_api_key.get_secret_value(),
        base_url=settings.modelhub_base_url,
        timeout=settings.modelhub_timeout,
        # Retries are owned by the workflow engine
        max_retries=0,
    )


def _translate(exc: openai.OpenAIError, operation: str) -> Exception:
    if isinstance(exc, _RETRYABLE):
        return ModelUnavailable(f"{operation} unavailable: {exc}")
    return GenerationFailed(f"{operation} rejected: {exc}")


class Embedder(abc.ABC):
    dim: int

    @abc.abstractmethod
    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Return one vector per input text, in order."""


class LanguageModel(abc.ABC):
    @abc.abstractmethod
    async def generate(self, system: str, prompt: str) -> str:
        """Run one completion with a system instruction and user content."""


class SpeechSynthesizer(abc.ABC):
    @abc.abstractmethod
    async def synthesize(self, text: str, voice: str) -> bytes:
        """Return MP3 audio for ``text`` spoken by ``voice``."""


class OpenAIEmbedder(Embedder):
    def __init__(self, client: AsyncOpenAI, model: str, dim: int):
        self.client = client
        self.model = model
        self.dim = dim

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        call_id = uuid4().hex[:12]
        logger.info(
            "embeddings.model.request",
            extra={
                "call_id": call_id,
                "model": self.model,
                "expected_dim": self.dim,
                "payload_count": len(texts),
                "sample_payloads": [
                    {"index": idx, "hash": hashlib.sha256(text.encode("utf-8")).hexdigest()[:12], "chars": len(text)}
                    for idx, text in enumerate(texts[:10])
                ],
            },
        )
        start_time = time.perf_counter()
        vectors: List[List[float]] = []
        for offset in range(0, len(texts), EMBEDDING_BATCH_SIZE):
            batch = list(texts[offset:offset + EMBEDDING_BATCH_SIZE])
            try:
                resp = await self.client.embeddings.create(model=self.model, input=batch)
            except openai.OpenAIError as exc:
                logger.warning("embeddings.model.failure", extra={"call_id": call_id, "model": self.model, "error": repr(exc)})
                raise _translate(exc, "embedding model") from exc
            vectors.extend(item.embedding for item in resp.data)
        for vector in vectors:
            if len(vector) != self.dim:
                logger.error(
                    "embeddings.model.dimension_mismatch",
                    extra={"call_id": call_id, "model": self.model, "observed_dim": len(vector), "expected_dim": self.dim},
                )
                raise GenerationFailed(f"Embedding dimension mismatch {len(vector)} != expected {self.dim}")
        logger.info(
            "embeddings.model.response",
            extra={
                "call_id": call_id,
                "model": self.model,
                "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                "vector_count": len(vectors),
            },
        )
        return vectors


class OpenAIChatModel(LanguageModel):
    def __init__(self, client: AsyncOpenAI, model: str, temperature: float = 0.7):
        self.client = client
        self.model = model
        self.temperature = temperature

    async def generate(self, system: str, prompt: str) -> str:
        start_time = time.perf_counter()
        try:
            resp = await self.client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
            )
        except openai.OpenAIError as exc:
            logger.warning("chat.model.failure", extra={"model": self.model, "error": repr(exc)})
            raise _translate(exc, "chat model") from exc
        text = (resp.choices[0].message.content or "") if resp.choices else ""
        logger.info(
            "chat.model.response",
            extra={
                "model": self.model,
                "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                "chars": len(text),
            },
        )
        return text


class OpenAISpeechSynthesizer(SpeechSynthesizer):
    def __init__(self, client: AsyncOpenAI, model: str):
        self.client = client
        self.model = model

    async def synthesize(self, text: str, voice: str) -> bytes:
        try:
            resp = await self.client.audio.speech.create(
                model=self.model,
                voice=voice,
                input=text,
                response_format="mp3",
            )
        except openai.OpenAIError as exc:
            logger.warning("speech.model.failure", extra={"model": self.model, "voice": voice, "error": repr(exc)})
            raise _translate(exc, "speech model") from exc
        return resp.content
