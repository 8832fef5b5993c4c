"""
Applicant lookup against k9-selvbetjening-oppslag.

The gateway retries transient failures (network errors and 5xx) with
exponential backoff. A policy denial from the lookup service is final and is
never retried.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Dict, List, Optional

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from .auth import CachedAccessTokenClient, IdToken, resolve_token
from .errors import AccessDeniedError, MalformedUpstreamResponseError, UpstreamUnavailableError
from .models import Applicant
from .utils import build_url

ATTRIBUTES = ["aktør_id", "fornavn", "mellomnavn", "etternavn", "fødselsdato"]
ACCESS_DENIED_STATUSES = {403, 451}


class ApplicantLookupResponse(BaseModel):
    aktør_id: str
    fornavn: str
    mellomnavn: Optional[str] = None
    etternavn: str
    fødselsdato: date


class _TransientLookupError(Exception):
    pass


class ApplicantGateway:
    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        api_key_header: str,
        api_key: str,
        token_client: Optional[CachedAccessTokenClient] = None,
        audience: Optional[str] = None,
        initial_delay: float = 0.2,
        factor: float = 2.0,
        max_attempts: int = 3,
        timeout: float = 10.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._client = client
        self.base_url = base_url
        self.api_key_header = api_key_header
        self.api_key = api_key
        self.token_client = token_client
        self.audience = audience
        self.initial_delay = initial_delay
        self.factor = factor
        self.max_attempts = max_attempts
        self.timeout = timeout
        self._logger = logger or logging.getLogger(__name__)

    def _headers(self, id_token: IdToken, call_id: str) -> Dict[str, str]:
        headers = {
            "Authorization": id_token.as_authorization_header(),
            "Accept": "application/json",
            "X-Correlation-ID": call_id,
        }
        if self.api_key:
            headers[self.api_key_header] = self.api_key
        return headers

    async def _lookup_once(self, url: str, headers: Dict[str, str]) -> ApplicantLookupResponse:
        try:
            response = await self._client.get(
                url, params=[("a", attribute) for attribute in ATTRIBUTES], headers=headers, timeout=self.timeout
            )
        except httpx.HTTPError as exc:
            raise _TransientLookupError(f"Nettverksfeil mot {url}: {exc!r}") from exc

        if response.status_code in ACCESS_DENIED_STATUSES:
            try:
                body = response.json()
            except ValueError:
                body = {}
            reasons: List[object] = body.get("invalid_parameters") or [] if isinstance(body, dict) else []
            self._logger.info(f"Tilgang nektet av oppslagstjenesten ({response.status_code}).")
            raise AccessDeniedError(reasons=reasons)

        if response.status_code >= 500:
            raise _TransientLookupError(f"Oppslagstjenesten svarte {response.status_code}")

        if response.status_code != 200:
            self._logger.error(f"Uventet svar {response.status_code} fra '{url}': {response.text}")
            raise UpstreamUnavailableError("Feil ved henting av søkers personinformasjon")

        try:
            return ApplicantLookupResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError) as exc:
            raise MalformedUpstreamResponseError("Ugyldig svar ved henting av søkers personinformasjon") from exc

    async def lookup(self, id_token: IdToken, call_id: str) -> ApplicantLookupResponse:
        url = build_url(self.base_url, "meg")
        exchanged = await resolve_token(id_token, self.audience, self.token_client)
        headers = self._headers(exchanged, call_id)

        delay = self.initial_delay
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self._lookup_once(url, headers)
            except _TransientLookupError as exc:
                if attempt == self.max_attempts:
                    self._logger.error(f"hente-soker feilet etter {attempt} forsøk: {exc}")
                    raise UpstreamUnavailableError("Feil ved henting av søkers personinformasjon") from exc
                self._logger.warning(f"hente-soker forsøk {attempt}/{self.max_attempts} feilet: {exc}. Prøver igjen om {delay}s")
                await asyncio.sleep(delay)
                delay *= self.factor

        raise UpstreamUnavailableError("Feil ved henting av søkers personinformasjon")  # pragma: no cover


class ApplicantService:
    def __init__(self, gateway: ApplicantGateway) -> None:
        self.gateway = gateway

    async def get_applicant(self, id_token: IdToken, call_id: str) -> Applicant:
        external_id = id_token.subject
        response = await self.gateway.lookup(id_token, call_id)
        return Applicant(
            external_id=external_id,
            internal_id=response.aktør_id,
            date_of_birth=response.fødselsdato,
            first_name=response.fornavn,
            middle_name=response.mellomnavn,
            last_name=response.etternavn,
        )
