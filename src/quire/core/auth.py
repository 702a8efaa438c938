"""Caller identity for notebook routes.

``get_current_user`` resolves the caller's stable subject id. Every
notebook's ``owner_id`` and every chunk's ``userId`` is compared against it.

* With ``settings.auth_enabled`` the ``Authorization: Bearer <token>`` header
  must carry an Auth0 access token; its ``sub`` claim is the caller id.
* Without it the id is read from the ``X-User-Id`` header (local runs, tests).

Either way a request without an identity is rejected with 401.

Signing keys come from ``https://<domain>/.well-known/jwks.json``. They are
cached for ``auth_jwks_cache_ttl_seconds``; a token signed with a key id the
cache does not know triggers one early refresh so key rotation does not lock
callers out until the TTL expires. python-jose does the JWT verification.
"""
from __future__ import annotations

import asyncio
import logging
import time
from functools import lru_cache
from typing import Any, Optional

import httpx
from fastapi import Depends, Header, HTTPException, Request, status
from jose import JWTError, jwt

from quire.core.config import Settings, get_settings

logger = logging.getLogger("quire.auth")

BEARER_PREFIX = "Bearer "


class JWKSCache:
    """Signing keys of one Auth0 tenant, indexed by ``kid``."""

    def __init__(self, domain: str, ttl_seconds: int, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.url = f"https://{domain}/.well-known/jwks.json"
        self._ttl = ttl_seconds
        self._transport = transport
        self._keys: dict[str, dict[str, Any]] = {}
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    async def _refresh(self) -> None:
        async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
            resp = await client.get(self.url)
        if resp.status_code != 200:
            raise RuntimeError(f"Failed to fetch JWKS: {resp.status_code}")
        self._keys = {k["kid"]: k for k in resp.json().get("keys", []) if k.get("kid")}
        self._expires_at = time.time() + self._ttl
        logger.info("auth.jwks.refreshed", extra={"url": self.url, "keys": len(self._keys)})

    async def key_for(self, kid: str) -> Optional[dict[str, Any]]:
        async with self._lock:
            stale = time.time() >= self._expires_at
            if stale or kid not in self._keys:
                await self._refresh()
        return self._keys.get(kid)


@lru_cache
def _jwks_cache(domain: str, ttl: int) -> JWKSCache:
    return JWKSCache(domain, ttl)


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    return authorization[len(BEARER_PREFIX):].strip()


async def verify_token(token: str, settings: Settings) -> dict[str, Any]:
    """Return the verified claims of an Auth0 access token or raise 401."""
    domain = settings.auth0_bare_domain
    if not domain or not settings.auth0_api_audience:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Auth0 not configured")
    if token.count(".") != 2:
        raise HTTPException(status_code=401, detail="Malformed bearer token")
    try:
        kid = jwt.get_unverified_header(token).get("kid")
        if not kid:
            raise HTTPException(status_code=401, detail="Missing kid header")
        key = await _jwks_cache(domain, settings.auth_jwks_cache_ttl_seconds).key_for(kid)
        if key is None:
            raise HTTPException(status_code=401, detail="Unknown kid")
        return jwt.decode(
            token,
            key,
            algorithms=settings.auth_algorithms,
            audience=settings.auth0_api_audience,
            issuer=settings.auth0_issuer,
        )
    except (JWTError, RuntimeError, httpx.HTTPError) as exc:
        logger.info("auth.token.rejected", extra={"error": repr(exc)})
        raise HTTPException(status_code=401, detail="Token verification failed") from exc


async def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> str:
    """Return the caller's subject id or raise 401."""
    if not settings.auth_enabled:
        user_id = (x_user_id or "").strip()
        if not user_id:
            raise HTTPException(status_code=401, detail="Missing X-User-Id header")
        return user_id
    # claims verified by the middleware are reused
    claims = getattr(request.state, "verified_claims", None)
    if claims is None:
        claims = await verify_token(bearer_token(authorization), settings)
    subject = claims.get("sub")
    if not subject:
        raise HTTPException(status_code=401, detail="Missing sub claim")
    return str(subject)


__all__ = ["get_current_user", "verify_token", "bearer_token", "JWKSCache"]
