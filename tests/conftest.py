"""
Pytest configuration and fixtures for the ettersending API tests.
"""

import os
from datetime import date, datetime, timezone
from typing import List
from unittest.mock import AsyncMock

import jwt
import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
os.environ["DISPATCH_STRATEGY"] = "http"
os.environ["AUTH_COOKIE_NAME"] = "selvbetjening-idtoken"
os.environ["K9_MELLOMLAGRING_INGRESS"] = "https://k9-mellomlagring.test"

from ettersending_api.auth import IdToken, IdTokenProvider
from ettersending_api.configuration import make_runtime_config
from ettersending_api.k9format import CanonicalRecordBuilder
from ettersending_api.main import Services, create_app
from ettersending_api.models import Applicant, Attachment, DocumentOwner, HealthResult, Submission
from ettersending_api.submission_service import EttersendingService
from ettersending_api.validation import SubmissionValidator

FNR = "02119970078"
RECEIVED_AT = datetime(2021, 4, 26, 12, 0, tzinfo=timezone.utc)


def make_token(subject: str = FNR, acr: str = "Level4") -> str:
    return jwt.encode({"sub": subject, "acr": acr, "iss": "tokendings"}, "test-secret-that-is-long-enough-for-hs256", algorithm="HS256")


@pytest.fixture
def id_token() -> IdToken:
    return IdToken(make_token())


@pytest.fixture
def submission_payload() -> dict:
    return {
        "søknadId": "d559c242-3ae2-4b31-a4a1-e1bb1fb4e6ba",
        "språk": "nb",
        "vedlegg": [
            "http://localhost:8080/vedlegg/vedlegg-1",
            "http://localhost:8080/vedlegg/vedlegg-2",
        ],
        "harForståttRettigheterOgPlikter": True,
        "harBekreftetOpplysninger": True,
        "beskrivelse": "Legeerklæring for barnet",
        "søknadstype": "PLEIEPENGER_SYKT_BARN",
    }


@pytest.fixture
def submission(submission_payload) -> Submission:
    return Submission.model_validate(submission_payload)


@pytest.fixture
def applicant() -> Applicant:
    return Applicant(
        external_id=FNR,
        internal_id="12345",
        date_of_birth=date(1999, 11, 2),
        first_name="ARNE",
        middle_name="BJARNE",
        last_name="CARLSEN",
    )


@pytest.fixture
def underage_applicant(applicant) -> Applicant:
    return applicant.model_copy(update={"date_of_birth": date(2010, 1, 1)})


def make_attachment(attachment_id: str, size: int = 16, title: str = "Legeerklæring") -> Attachment:
    return Attachment(
        attachment_id=attachment_id,
        content=b"x" * size,
        content_type="application/pdf",
        title=title,
        owner=DocumentOwner(owner_id=FNR),
    )


@pytest.fixture
def attachments() -> List[Attachment]:
    return [make_attachment("vedlegg-1", title="Legeerklæring"), make_attachment("vedlegg-2", title="Timeliste")]


@pytest.fixture
def applicant_service(applicant):
    service = AsyncMock()
    service.get_applicant.return_value = applicant
    return service


@pytest.fixture
def attachment_gateway(attachments):
    gateway = AsyncMock()
    gateway.fetch_many.return_value = attachments
    return gateway


@pytest.fixture
def dispatcher():
    dispatcher = AsyncMock()
    dispatcher.check.return_value = HealthResult(name="test", healthy=True, message="OK")
    return dispatcher


@pytest.fixture
def ettersending_service(applicant_service, attachment_gateway, dispatcher) -> EttersendingService:
    return EttersendingService(
        validator=SubmissionValidator(),
        applicant_service=applicant_service,
        attachment_gateway=attachment_gateway,
        record_builder=CanonicalRecordBuilder(storage_ingress="https://k9-mellomlagring.test"),
        dispatcher=dispatcher,
        clock=lambda: RECEIVED_AT,
    )


@pytest.fixture
def services(applicant_service, attachment_gateway, dispatcher, ettersending_service) -> Services:
    return Services(
        config=make_runtime_config(),
        id_token_provider=IdTokenProvider(cookie_name="selvbetjening-idtoken"),
        applicant_service=applicant_service,
        attachment_gateway=attachment_gateway,
        dispatcher=dispatcher,
        ettersending_service=ettersending_service,
    )


@pytest.fixture
def client(services):
    """Create a test client for the FastAPI app with mocked backends."""
    return TestClient(create_app(services=services))


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {make_token()}"}
