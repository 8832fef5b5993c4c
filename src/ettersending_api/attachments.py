"""
Attachment storage through k9-mellomlagring.

Reads, uploads and deletes happen on behalf of the caller (their token, possibly
exchanged). Persisting and releasing a hold are system operations authorised
with a client-credentials token. None of the write operations are retried here;
a failure is raised once and the caller decides how to compensate.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Dict, Iterable, List, Optional, Sequence

import httpx

from .auth import CachedAccessTokenClient, IdToken, resolve_token
from .errors import AttachmentHoldError, MalformedUpstreamResponseError, UpstreamUnavailableError
from .models import Attachment, DocumentOwner
from .utils import attachment_id, build_url


class AttachmentGateway:
    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        token_client: CachedAccessTokenClient,
        scopes: Iterable[str],
        audience: Optional[str] = None,
        timeout: float = 10.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._client = client
        self.base_url = base_url
        self.token_client = token_client
        self.scopes = list(scopes)
        self.audience = audience
        self.timeout = timeout
        self._logger = logger or logging.getLogger(__name__)

    def _document_url(self, *parts: str) -> str:
        return build_url(self.base_url, "v1", "dokument", *parts)

    async def _user_headers(self, id_token: IdToken, call_id: str) -> Dict[str, str]:
        token = await resolve_token(id_token, self.audience, self.token_client)
        return {
            "Authorization": token.as_authorization_header(),
            "X-Correlation-ID": call_id,
            "Accept": "application/json",
        }

    async def _system_headers(self, call_id: str) -> Dict[str, str]:
        token = await self.token_client.get_access_token(self.scopes)
        return {
            "Authorization": token.as_authorization_header(),
            "X-Correlation-ID": call_id,
        }

    async def _send(self, method: str, url: str, headers: Dict[str, str], payload: Optional[dict] = None) -> httpx.Response:
        try:
            return await self._client.request(method, url, json=payload, headers=headers, timeout=self.timeout)
        except httpx.HTTPError as exc:
            self._logger.error(f"{method} {url} feilet: {exc!r}")
            raise UpstreamUnavailableError("Feil ved kommunikasjon med mellomlagring.") from exc

    async def store(self, attachment: Attachment, id_token: IdToken, call_id: str) -> str:
        response = await self._send(
            "POST", self._document_url(), await self._user_headers(id_token, call_id), attachment.to_storage_payload()
        )
        if response.status_code != 201 or "Location" not in response.headers:
            self._logger.error(f"Feil ved lagring av vedlegg: {response.status_code} {response.text}")
            raise UpstreamUnavailableError("Feil ved lagring av vedlegg.")
        return attachment_id(response.headers["Location"])

    async def fetch(self, ref: str, owner: DocumentOwner, id_token: IdToken, call_id: str) -> Optional[Attachment]:
        return await self._fetch(ref, owner, await self._user_headers(id_token, call_id))

    async def _fetch(self, ref: str, owner: DocumentOwner, headers: Dict[str, str]) -> Optional[Attachment]:
        document_id = attachment_id(ref)
        response = await self._send(
            "POST",
            self._document_url(document_id),
            headers,
            owner.model_dump(by_alias=True),
        )
        if response.status_code == 404:
            self._logger.info(f"Fant ikke vedlegg {document_id}")
            return None
        if response.status_code != 200:
            self._logger.error(f"Feil ved henting av vedlegg {document_id}: {response.status_code}")
            raise UpstreamUnavailableError("Feil ved henting av vedlegg.")

        try:
            body = response.json()
            return Attachment(
                attachment_id=document_id,
                content=base64.b64decode(body["content"]),
                content_type=body["content_type"],
                title=body["title"],
                owner=owner,
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise MalformedUpstreamResponseError(f"Ugyldig vedlegg {document_id} fra mellomlagring.") from exc

    async def fetch_many(
        self, refs: Sequence[str], owner: DocumentOwner, id_token: IdToken, call_id: str
    ) -> List[Attachment]:
        """
        Fetch all references concurrently. References that do not resolve are left out of the result.

        Every fetch is allowed to finish before the first failure, if any, is raised.
        """
        headers = await self._user_headers(id_token, call_id)
        results = await asyncio.gather(*(self._fetch(ref, owner, headers) for ref in refs), return_exceptions=True)
        failures = [result for result in results if isinstance(result, BaseException)]
        if failures:
            raise failures[0]
        return [attachment for attachment in results if attachment is not None]

    async def delete(self, ref: str, owner: DocumentOwner, id_token: IdToken, call_id: str) -> bool:
        document_id = attachment_id(ref)
        response = await self._send(
            "DELETE",
            self._document_url(document_id),
            await self._user_headers(id_token, call_id),
            owner.model_dump(by_alias=True),
        )
        if response.status_code != 204:
            self._logger.error(f"Feil ved sletting av vedlegg {document_id}: {response.status_code}")
            return False
        return True

    async def _update_hold(self, action: str, ids: Sequence[str], owner: DocumentOwner, call_id: str) -> List[str]:
        headers = await self._system_headers(call_id)

        async def _one(document_id: str) -> None:
            url = self._document_url("customized", document_id, action)
            response = await self._send("PUT", url, headers, owner.model_dump(by_alias=True))
            if not response.is_success:
                raise UpstreamUnavailableError(
                    f"Feil ved {action} av vedlegg {document_id}: status {response.status_code}"
                )

        results = await asyncio.gather(*(_one(document_id) for document_id in ids), return_exceptions=True)
        completed = [document_id for document_id, result in zip(ids, results) if not isinstance(result, BaseException)]
        failures = [result for result in results if isinstance(result, BaseException)]
        if failures:
            self._logger.error(f"{action} feilet for {len(failures)} av {len(ids)} vedlegg, fullført for {completed}")
            raise AttachmentHoldError(
                f"Feil ved {action} av vedlegg: {failures[0]}", completed_ids=completed
            ) from failures[0]
        return completed

    async def persist(self, ids: Sequence[str], owner: DocumentOwner, call_id: str) -> List[str]:
        """Set a hold on every id. On a partial failure the raised error lists the ids that were held."""
        return await self._update_hold("persister", ids, owner, call_id)

    async def release_hold(self, ids: Sequence[str], owner: DocumentOwner, call_id: str) -> List[str]:
        return await self._update_hold("fjern-hold", ids, owner, call_id)
