import base64

import httpx
import pytest
from fastapi import HTTPException
from jose import jwt

from quire.core import auth
from quire.core.config import get_settings

SECRET = b"unit-test-signing-secret-0123456"
KEY = {"kty": "oct", "kid": "k1", "alg": "HS256", "k": base64.urlsafe_b64encode(SECRET).rstrip(b"=").decode()}


@pytest.fixture
def auth_settings():
    return get_settings().model_copy(
        update={
            "auth_enabled": True,
            "auth0_domain": "https://tenant.example/",
            "auth0_api_audience": "quire-api",
            "auth_algorithms": ["HS256"],
        }
    )


@pytest.fixture
def jwks_fetches(monkeypatch):
    fetches = []

    def handler(request: httpx.Request) -> httpx.Response:
        fetches.append(str(request.url))
        return httpx.Response(200, json={"keys": [KEY]})

    cache = auth.JWKSCache("tenant.example", 600, transport=httpx.MockTransport(handler))
    monkeypatch.setattr(auth, "_jwks_cache", lambda domain, ttl: cache)
    return fetches


def _token(kid="k1", **claims):
    body = {"sub": "auth0|abc", "aud": "quire-api", "iss": "https://tenant.example/", **claims}
    return jwt.encode(body, SECRET, algorithm="HS256", headers={"kid": kid})


@pytest.mark.unit
def test_bearer_token_parsing():
    assert auth.bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"
    with pytest.raises(HTTPException) as exc:
        auth.bearer_token("Basic dXNlcg==")
    assert exc.value.status_code == 401


@pytest.mark.asyncio
@pytest.mark.unit
async def test_valid_token_yields_claims_and_keys_are_cached(auth_settings, jwks_fetches):
    claims = await auth.verify_token(_token(), auth_settings)
    assert claims["sub"] == "auth0|abc"
    await auth.verify_token(_token(), auth_settings)
    assert jwks_fetches == ["https://tenant.example/.well-known/jwks.json"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_kid_forces_one_refresh(auth_settings, jwks_fetches):
    await auth.verify_token(_token(), auth_settings)
    with pytest.raises(HTTPException) as exc:
        await auth.verify_token(_token(kid="rotated"), auth_settings)
    assert exc.value.status_code == 401
    assert len(jwks_fetches) == 2


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize("claims", [{"aud": "other-api"}, {"iss": "https://evil.example/"}])
async def test_wrong_audience_or_issuer_is_rejected(auth_settings, jwks_fetches, claims):
    with pytest.raises(HTTPException) as exc:
        await auth.verify_token(_token(**claims), auth_settings)
    assert exc.value.status_code == 401


@pytest.mark.asyncio
@pytest.mark.unit
async def test_malformed_token_is_rejected_without_fetching(auth_settings, jwks_fetches):
    with pytest.raises(HTTPException):
        await auth.verify_token("not-a-jwt", auth_settings)
    assert jwks_fetches == []
