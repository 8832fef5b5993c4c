"""
Hand-off of completed ettersendinger to downstream processing.

Two strategies share the ``Dispatcher`` protocol:

- ``MottakGateway`` posts the record to k9-ettersending-mottak over HTTP.
- ``StreamProducer`` puts the record on an AWS Kinesis stream with boto3.

Neither retries. A failed hand-off is raised to the caller, which owns the
compensation. The strategy is picked once at startup by ``build_dispatcher``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Iterable, Optional, Protocol

import boto3
import httpx
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from omegaconf import DictConfig

from .auth import CachedAccessTokenClient
from .configuration import optional_string
from .errors import ConfigurationError, DispatchFailure
from .models import CanonicalRecord, HealthResult, Metadata
from .utils import build_url, format_status_log


class Dispatcher(Protocol):
    async def submit(self, record: CanonicalRecord, metadata: Metadata) -> None:
        ...

    async def check(self) -> HealthResult:
        ...


class MottakGateway:
    NAME = "K9EttersendingMottakGateway"

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        token_client: CachedAccessTokenClient,
        scopes: Iterable[str],
        api_key_header: str,
        api_key: str,
        timeout: float = 20.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._client = client
        self.url = build_url(base_url, "v1", "ettersend")
        self.token_client = token_client
        self.scopes = list(scopes)
        self.api_key_header = api_key_header
        self.api_key = api_key
        self.timeout = timeout
        self._logger = logger or logging.getLogger(__name__)

    async def check(self) -> HealthResult:
        try:
            await self.token_client.get_access_token(self.scopes)
        except Exception as exc:  # noqa: BLE001
            self._logger.error(f"Feil ved henting av access token for å legge søknad til prosessering: {exc!r}")
            return HealthResult(
                name=self.NAME,
                healthy=False,
                message="Henting av access token for å legge søknad til prosessering feilet.",
            )
        return HealthResult(
            name=self.NAME, healthy=True, message="Henting av access token for å legge søknad til prosessering OK."
        )

    async def submit(self, record: CanonicalRecord, metadata: Metadata) -> None:
        token = await self.token_client.get_access_token(self.scopes)
        headers = {
            "Content-Type": "application/json",
            "X-Correlation-ID": metadata.correlation_id,
            "Authorization": token.as_authorization_header(),
        }
        if self.api_key:
            headers[self.api_key_header] = self.api_key

        try:
            response = await self._client.post(
                self.url, content=record.to_json().encode("utf-8"), headers=headers, timeout=self.timeout
            )
        except httpx.HTTPError as exc:
            self._logger.error(f"Feil ved ettersending til prosessering mot '{self.url}': {exc!r}")
            raise DispatchFailure("Feil ved ettersending til prosessering.") from exc

        if response.status_code != 202:
            self._logger.error(f"Error response = '{response.text}' fra '{self.url}' ({response.status_code})")
            raise DispatchFailure("Feil ved ettersending til prosessering.")

        self._logger.info(format_status_log(record.submission_id, "sendt til prosessering"))


class StreamProducer:
    NAME = "EttersendingStreamProducer"

    def __init__(
        self,
        stream: str,
        schema_version: int = 1,
        client: Any = None,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        timeout: float = 20.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.stream = stream
        self.schema_version = schema_version
        self.client = client or boto3.client(
            "kinesis",
            region_name=region_name,
            endpoint_url=endpoint_url,
            config=BotoConfig(connect_timeout=timeout, read_timeout=timeout, retries={"max_attempts": 0}),
        )
        self._logger = logger or logging.getLogger(__name__)

    def _envelope(self, record: CanonicalRecord, metadata: Metadata) -> bytes:
        payload = {
            "metadata": {"correlationId": metadata.correlation_id, "version": metadata.version},
            "data": record.to_dict(),
        }
        return json.dumps(payload, ensure_ascii=False).encode("utf-8")

    def _put(self, record: CanonicalRecord, metadata: Metadata) -> dict:
        return self.client.put_record(
            StreamName=self.stream,
            Data=self._envelope(record, metadata),
            PartitionKey=record.submission_id,
        )

    async def submit(self, record: CanonicalRecord, metadata: Metadata) -> None:
        if metadata.version != self.schema_version:
            raise ConfigurationError(f"Kan ikke legge melding med versjon {metadata.version} til prosessering.")

        try:
            result = await asyncio.to_thread(self._put, record, metadata)
        except (BotoCoreError, ClientError) as exc:
            self._logger.error(f"Feil ved publisering til stream {self.stream}: {exc!r}")
            raise DispatchFailure("Feilet ved å legge melding på stream.") from exc

        self._logger.info(
            format_status_log(
                record.submission_id,
                f"sendes til stream {self.stream} med sekvensnummer '{result.get('SequenceNumber')}' "
                f"til shard '{result.get('ShardId')}'",
            )
        )

    async def check(self) -> HealthResult:
        try:
            await asyncio.to_thread(self.client.describe_stream_summary, StreamName=self.stream)
        except (BotoCoreError, ClientError) as exc:
            self._logger.error(f"Feil ved tilkobling til stream {self.stream}: {exc!r}")
            return HealthResult(name=self.NAME, healthy=False, message=f"Feil ved tilkobling mot stream. {exc}")
        return HealthResult(name=self.NAME, healthy=True, message="Tilkobling til stream OK!")


def build_dispatcher(
    config: DictConfig,
    client: httpx.AsyncClient,
    token_client: CachedAccessTokenClient,
) -> Dispatcher:
    dispatch = config.dispatch
    if dispatch.strategy == "http":
        return MottakGateway(
            client=client,
            base_url=dispatch.http.url,
            token_client=token_client,
            scopes=list(dispatch.http.scopes),
            api_key_header=config.gateways.api_gateway_key.header,
            api_key=config.gateways.api_gateway_key.value,
            timeout=float(dispatch.timeout_seconds),
        )
    if dispatch.strategy == "queue":
        return StreamProducer(
            stream=dispatch.queue.stream,
            schema_version=int(dispatch.queue.schema_version),
            region_name=optional_string(dispatch.queue.region),
            endpoint_url=optional_string(dispatch.queue.endpoint_url),
            timeout=float(dispatch.timeout_seconds),
        )
    raise ConfigurationError(f"Ukjent dispatch.strategy '{dispatch.strategy}'")
