from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from omegaconf import DictConfig

from .applicant import ApplicantGateway, ApplicantService
from .attachments import AttachmentGateway
from .auth import AccessTokenClient, CachedAccessTokenClient, IdToken, IdTokenProvider
from .configuration import description_required_predicate, make_runtime_config, optional_string
from .dispatch import Dispatcher, build_dispatcher
from .errors import (
    AttachmentDeletionError,
    AttachmentNotFoundError,
    AttachmentRejectedError,
    AttachmentTooLargeError,
    EttersendingError,
    ValidationError,
)
from .k9format import CanonicalRecordBuilder
from .middleware import CallIdMiddleware, get_call_id
from .models import Attachment, AttachmentForwarding, DocumentOwner, InvalidParameter, Submission
from .submission_service import EttersendingService
from .utils import build_url
from .validation import SubmissionValidator

logger = logging.getLogger(__name__)

PROBLEM_JSON = "application/problem+json"


@dataclass
class Services:
    config: DictConfig
    id_token_provider: IdTokenProvider
    applicant_service: ApplicantService
    attachment_gateway: AttachmentGateway
    dispatcher: Dispatcher
    ettersending_service: EttersendingService


def build_services(config: DictConfig, client: httpx.AsyncClient) -> Services:
    """Wire every collaborator from configuration. ``client`` is shared by all HTTP gateways."""
    gateways = config.gateways
    token_client = CachedAccessTokenClient(
        AccessTokenClient(
            client=client,
            token_endpoint=config.auth.token_endpoint,
            client_id=config.auth.client_id,
            client_secret=config.auth.client_secret,
            token_exchange_endpoint=config.auth.tokenx_endpoint,
        )
    )

    applicant_service = ApplicantService(
        ApplicantGateway(
            client=client,
            base_url=gateways.k9_oppslag.url,
            api_key_header=gateways.api_gateway_key.header,
            api_key=gateways.api_gateway_key.value,
            token_client=token_client,
            audience=optional_string(gateways.k9_oppslag.audience),
            initial_delay=gateways.k9_oppslag.retry.initial_delay_ms / 1000,
            factor=float(gateways.k9_oppslag.retry.factor),
            max_attempts=int(gateways.k9_oppslag.retry.max_attempts),
            timeout=float(gateways.k9_oppslag.timeout_seconds),
        )
    )
    attachment_gateway = AttachmentGateway(
        client=client,
        base_url=gateways.k9_mellomlagring.url,
        token_client=token_client,
        scopes=list(gateways.k9_mellomlagring.scopes),
        audience=optional_string(gateways.k9_mellomlagring.audience),
        timeout=float(gateways.k9_mellomlagring.timeout_seconds),
    )
    dispatcher = build_dispatcher(config, client, token_client)

    ettersending_service = EttersendingService(
        validator=SubmissionValidator(description_required_predicate(config)),
        applicant_service=applicant_service,
        attachment_gateway=attachment_gateway,
        record_builder=CanonicalRecordBuilder(
            storage_ingress=gateways.k9_mellomlagring.ingress,
            forwarding=AttachmentForwarding(config.submission.attachment_forwarding),
        ),
        dispatcher=dispatcher,
        max_total_attachment_bytes=int(config.submission.max_total_attachment_bytes),
        legal_age=int(config.submission.legal_age),
    )

    return Services(
        config=config,
        id_token_provider=IdTokenProvider(
            cookie_name=optional_string(config.auth.cookie_name),
            required_acr=optional_string(config.auth.required_acr),
        ),
        applicant_service=applicant_service,
        attachment_gateway=attachment_gateway,
        dispatcher=dispatcher,
        ettersending_service=ettersending_service,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_id_token(request: Request, services: Services = Depends(get_services)) -> IdToken:
    return services.id_token_provider.get_id_token(request)


def _problem_response(error: EttersendingError, request: Request) -> JSONResponse:
    problem = error.to_problem_details(instance=request.url.path)
    return JSONResponse(
        status_code=error.status,
        content=jsonable_encoder(problem.model_dump(exclude_none=True)),
        media_type=PROBLEM_JSON,
    )


async def handle_ettersending_error(request: Request, exc: EttersendingError) -> JSONResponse:
    if exc.status >= 500:
        logger.error(f"{request.method} {request.url.path} feilet: {exc.detail}", exc_info=exc)
    return _problem_response(exc, request)


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    invalid_parameters = [
        InvalidParameter(
            name=".".join(str(part) for part in error.get("loc", ()) if part != "body") or "body",
            reason=error.get("msg", "Ugyldig verdi"),
            invalid_value=error.get("input"),
        )
        for error in exc.errors()
    ]
    return _problem_response(ValidationError(invalid_parameters=invalid_parameters), request)


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Uventet feil ved {request.method} {request.url.path}")
    return _problem_response(EttersendingError(), request)


def create_app(config: Optional[DictConfig] = None, services: Optional[Services] = None) -> FastAPI:
    config = config if config is not None else (services.config if services else make_runtime_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is not None:
            app.state.services = services
            yield
            return
        async with httpx.AsyncClient(timeout=float(config.dispatch.timeout_seconds)) as client:
            app.state.services = build_services(config, client)
            yield

    app = FastAPI(title="k9 ettersending API", version="0.1.0", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors.addresses),
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Location", "X-Correlation-ID"],
    )
    app.add_middleware(CallIdMiddleware)

    app.add_exception_handler(EttersendingError, handle_ettersending_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    @app.get("/isalive", response_class=PlainTextResponse)
    def isalive() -> str:
        return "ALIVE"

    @app.get("/isready", response_class=PlainTextResponse)
    def isready() -> str:
        return "READY"

    @app.get("/health")
    async def health(services: Services = Depends(get_services)) -> JSONResponse:
        result = await services.dispatcher.check()
        body: Dict[str, Any] = {"status": "UP" if result.healthy else "DOWN", "checks": [result.model_dump()]}
        return JSONResponse(status_code=200 if result.healthy else 503, content=body)

    @app.post("/ettersend", status_code=202)
    async def send_ettersending(
        submission: Submission,
        request: Request,
        id_token: IdToken = Depends(get_id_token),
        services: Services = Depends(get_services),
    ) -> Response:
        logger.debug("Mottatt ettersending.")
        await services.ettersending_service.register(submission, id_token, get_call_id(request))
        return Response(status_code=202)

    @app.post("/ettersending/valider", status_code=202)
    async def validate_ettersending(submission: Submission, services: Services = Depends(get_services)) -> Response:
        services.ettersending_service.validate(submission)
        return Response(status_code=202)

    @app.get("/soker")
    async def get_soker(
        request: Request,
        id_token: IdToken = Depends(get_id_token),
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        applicant = await services.applicant_service.get_applicant(id_token, get_call_id(request))
        body = applicant.model_dump(mode="json", by_alias=True)
        body["myndig"] = applicant.is_of_legal_age(legal_age=int(services.config.submission.legal_age))
        return JSONResponse(content=body)

    @app.post("/vedlegg", status_code=201)
    async def upload_vedlegg(
        request: Request,
        vedlegg: Optional[UploadFile] = File(None),
        id_token: IdToken = Depends(get_id_token),
        services: Services = Depends(get_services),
    ) -> Response:
        if vedlegg is None or not vedlegg.content_type:
            raise AttachmentRejectedError()

        supported = [content_type.lower() for content_type in services.config.attachments.supported_content_types]
        if vedlegg.content_type.lower() not in supported:
            raise AttachmentRejectedError(f"Vedleggets type må være en av {supported}")

        content = await vedlegg.read()
        await vedlegg.close()
        if len(content) > int(services.config.attachments.max_upload_bytes):
            raise AttachmentTooLargeError()

        attachment = Attachment(
            content=content,
            content_type=vedlegg.content_type,
            title=vedlegg.filename or "Ingen tittel tilgjengelig",
            owner=DocumentOwner(owner_id=id_token.subject),
        )
        attachment_id = await services.attachment_gateway.store(attachment, id_token, get_call_id(request))
        logger.info(f"Lagret vedlegg {attachment_id}")
        return Response(
            status_code=201,
            headers={
                "Location": build_url(str(request.base_url), "vedlegg", attachment_id),
                "Access-Control-Expose-Headers": "Location",
            },
        )

    @app.get("/vedlegg/{vedlegg_id}")
    async def get_vedlegg(
        vedlegg_id: str,
        request: Request,
        id_token: IdToken = Depends(get_id_token),
        services: Services = Depends(get_services),
    ) -> Response:
        attachment = await services.attachment_gateway.fetch(
            vedlegg_id, DocumentOwner(owner_id=id_token.subject), id_token, get_call_id(request)
        )
        if attachment is None:
            raise AttachmentNotFoundError()
        return Response(content=attachment.content, media_type=attachment.content_type)

    @app.delete("/vedlegg/{vedlegg_id}", status_code=204)
    async def delete_vedlegg(
        vedlegg_id: str,
        request: Request,
        id_token: IdToken = Depends(get_id_token),
        services: Services = Depends(get_services),
    ) -> Response:
        deleted = await services.attachment_gateway.delete(
            vedlegg_id, DocumentOwner(owner_id=id_token.subject), id_token, get_call_id(request)
        )
        if not deleted:
            raise AttachmentDeletionError()
        return Response(status_code=204)

    return app


app = create_app()
