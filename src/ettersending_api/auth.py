"""
Caller tokens and system tokens.

The caller's id token arrives in a cookie or an ``Authorization`` header and is
only inspected here, never verified; signature checks belong to the
authentication layer in front of the service. System tokens are fetched from an
OAuth2 token endpoint with the client-credentials grant, or exchanged on behalf
of the caller with the token-exchange grant.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, Optional

import httpx
import jwt
from fastapi import Request

from .errors import AuthorizationError, MissingTokenError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

TOKEN_EXCHANGE_GRANT = "urn:ietf:params:oauth:grant-type:token-exchange"
JWT_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:jwt"
# Refresh this many seconds before the token actually expires
EXPIRY_LEEWAY_SECONDS = 10


@dataclass(frozen=True)
class IdToken:
    value: str

    @property
    def claims(self) -> Dict[str, Any]:
        try:
            return jwt.decode(self.value, options={"verify_signature": False})
        except jwt.InvalidTokenError as exc:
            raise MissingTokenError("Token er ikke en gyldig JWT.") from exc

    @property
    def subject(self) -> str:
        subject = self.claims.get("pid") or self.claims.get("sub")
        if not subject:
            raise MissingTokenError("Token mangler 'sub' claim.")
        return subject

    @property
    def issuer(self) -> Optional[str]:
        return self.claims.get("iss")

    def require_acr(self, acr: Optional[str]) -> "IdToken":
        if acr and self.claims.get("acr") != acr:
            raise AuthorizationError(f"Innloggingen må ha sikkerhetsnivå {acr}.")
        return self

    def as_authorization_header(self) -> str:
        return f"Bearer {self.value}"


class IdTokenProvider:
    """Finds the caller's id token, first in the configured cookie, then in the Authorization header."""

    def __init__(self, cookie_name: Optional[str] = None, required_acr: Optional[str] = None) -> None:
        self.cookie_name = cookie_name
        self.required_acr = required_acr

    def get_id_token(self, request: Request) -> IdToken:
        if self.cookie_name:
            cookie = request.cookies.get(self.cookie_name)
            if cookie:
                return IdToken(cookie).require_acr(self.required_acr)

        header = request.headers.get("Authorization", "")
        if header.startswith("Bearer ") and header[len("Bearer "):].strip():
            return IdToken(header[len("Bearer "):].strip()).require_acr(self.required_acr)

        raise MissingTokenError(
            f"Ingen cookie med navnet '{self.cookie_name}' eller auth header satt."
        )


@dataclass(frozen=True)
class AccessToken:
    token: str
    expires_at: float

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now or time.monotonic()) >= self.expires_at - EXPIRY_LEEWAY_SECONDS

    def as_authorization_header(self) -> str:
        return f"Bearer {self.token}"


class AccessTokenClient:
    """Fetches system tokens from an OAuth2 token endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        token_endpoint: str,
        client_id: str,
        client_secret: str,
        token_exchange_endpoint: Optional[str] = None,
    ) -> None:
        self._client = client
        self.token_endpoint = token_endpoint
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_exchange_endpoint = token_exchange_endpoint or token_endpoint

    async def _request_token(self, url: str, form: Dict[str, str]) -> AccessToken:
        try:
            response = await self._client.post(url, data=form, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError("Feil ved henting av access token.") from exc

        if response.status_code != 200:
            logger.error(f"Token endpoint {url} svarte {response.status_code}: {response.text}")
            raise UpstreamUnavailableError("Feil ved henting av access token.")

        payload = response.json()
        return AccessToken(
            token=payload["access_token"],
            expires_at=time.monotonic() + int(payload.get("expires_in", 60)),
        )

    async def get_access_token(self, scopes: Iterable[str]) -> AccessToken:
        return await self._request_token(
            self.token_endpoint,
            {
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "scope": " ".join(sorted(scopes)),
            },
        )

    async def exchange(self, id_token: IdToken, audience: str) -> IdToken:
        token = await self._request_token(
            self.token_exchange_endpoint,
            {
                "grant_type": TOKEN_EXCHANGE_GRANT,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "subject_token_type": JWT_TOKEN_TYPE,
                "subject_token": id_token.value,
                "audience": audience,
            },
        )
        exchanged = IdToken(token.token)
        logger.info(f"Utvekslet token fra {id_token.issuer} med token fra {exchanged.issuer}.")
        return exchanged


class CachedAccessTokenClient:
    """
    Caches client-credentials tokens per scope set.

    Refreshes are single-flight: concurrent callers waiting on the same scopes
    share one request to the token endpoint.
    """

    def __init__(self, delegate: AccessTokenClient) -> None:
        self._delegate = delegate
        self._tokens: Dict[FrozenSet[str], AccessToken] = {}
        self._locks: Dict[FrozenSet[str], asyncio.Lock] = {}

    def _lock_for(self, key: FrozenSet[str]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def get_access_token(self, scopes: Iterable[str]) -> AccessToken:
        key = frozenset(scopes)
        cached = self._tokens.get(key)
        if cached is not None and not cached.is_expired():
            return cached

        async with self._lock_for(key):
            cached = self._tokens.get(key)
            if cached is not None and not cached.is_expired():
                return cached
            token = await self._delegate.get_access_token(key)
            self._tokens[key] = token
            return token

    async def exchange(self, id_token: IdToken, audience: str) -> IdToken:
        return await self._delegate.exchange(id_token, audience)


async def resolve_token(
    id_token: IdToken,
    audience: Optional[str],
    token_client: Optional[CachedAccessTokenClient],
) -> IdToken:
    """Exchange the caller's token for ``audience``, or forward it unchanged when no audience is configured."""
    if not audience or token_client is None:
        return id_token
    return await token_client.exchange(id_token, audience)
