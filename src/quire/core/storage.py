"""Object storage for uploaded files and generated audio.

Writes go to ``(bucket, path)`` and return a stable public URL; reads are
always by URL. URLs this storage did not mint (e.g. discovered PDFs) are
fetched over HTTP.
"""

from __future__ import annotations

import abc
import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote, urlparse

import boto3
import httpx
from botocore.config import Config as BotoConfig

from quire.core.config import Settings

HTTP_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


class ObjectStorage(abc.ABC):
    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    @abc.abstractmethod
    async def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Store ``data`` under ``path`` and return its public URL."""

    async def read(self, url: str) -> bytes:
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT, transport=self._transport, follow_redirects=True) as client:
            resp = await client.get(url)
            resp.raise_for_status()
            return resp.content


@dataclass
class S3Location:
    endpoint: Optional[str]
    bucket: str
    region: Optional[str]
    access_key: Optional[str]
    secret_key: Optional[str]
    force_path_style: bool = False
    public_base_url: Optional[str] = None

    @property
    def base_url(self) -> str:
        if self.public_base_url:
            return self.public_base_url.rstrip("/")
        if self.endpoint:
            return f"{self.endpoint.rstrip('/')}/{self.bucket}"
        region = f".{self.region}" if self.region else ""
        return f"https://{self.bucket}.s3{region}.amazonaws.com"


class S3ObjectStorage(ObjectStorage):
    """S3 (or MinIO) storage.

    boto3 is blocking, so every call runs in a worker thread, response body
    included. One client is built up front; boto3 clients are thread-safe.
    """

    def __init__(self, location: S3Location, transport: Optional[httpx.AsyncBaseTransport] = None, client=None):
        super().__init__(transport)
        self.location = location
        self._s3 = client if client is not None else self._make_client(location)

    @staticmethod
    def _make_client(location: S3Location):
        extra = {}
        if location.region:
            extra["region_name"] = location.region
        if location.endpoint:
            extra["endpoint_url"] = location.endpoint
        if location.force_path_style:
            extra["config"] = BotoConfig(s3={"addressing_style": "path"})
        return boto3.session.Session().client(
            "s3",
            aws_access_key_id=location.access_key,
            aws_secret_access_key=location.secret_key,
            **extra,
        )

    def _key_for(self, url: str) -> Optional[str]:
        prefix = self.location.base_url + "/"
        return unquote(url[len(prefix):]) if url.startswith(prefix) else None

    async def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        key = path.lstrip("/")
        await asyncio.to_thread(
            self._s3.put_object,
            Bucket=self.location.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
        return f"{self.location.base_url}/{quote(key)}"

    def _get_bytes(self, key: str) -> bytes:
        return self._s3.get_object(Bucket=self.location.bucket, Key=key)["Body"].read()

    async def read(self, url: str) -> bytes:
        key = self._key_for(url)
        if key is None:
            return await super().read(url)
        return await asyncio.to_thread(self._get_bytes, key)


class LocalObjectStorage(ObjectStorage):
    """Filesystem-backed storage handing out ``file://`` URLs."""

    def __init__(self, root: str | Path, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(transport)
        self.root = Path(root).resolve()

    async def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        target = (self.root / path.lstrip("/")).resolve()
        if self.root not in target.parents:
            raise ValueError(f"path escapes storage root: {path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_bytes, data)
        return target.as_uri()

    async def read(self, url: str) -> bytes:
        parsed = urlparse(url)
        if parsed.scheme != "file":
            return await super().read(url)
        return await asyncio.to_thread(Path(unquote(parsed.path)).read_bytes)


def build_object_storage(settings: Settings) -> ObjectStorage:
    if settings.storage_backend == "local":
        return LocalObjectStorage(settings.storage_local_root)
    if not settings.s3_bucket_name:
        raise RuntimeError("S3 storage selected but S3_BUCKET is not set")
    return S3ObjectStorage(
        S3Location(
            endpoint=settings.s3_endpoint,
            bucket=settings.s3_bucket_name,
            region=settings.s3_region,
            access_key=settings.s3_access_key_id,
            secret_key=settings.s3_secret_access_key.get_secret_value() if settings.s3_secret_access_key else None,
            force_path_style=settings.s3_force_path_style,
            public_base_url=settings.s3_public_base_url,
        )
    )
