"""
Tests for the ettersending API endpoints.

Tests cover:
- Ops endpoints (isalive, isready, health)
- Sending and validating an ettersending
- Problem-details responses for every error class
- Applicant lookup
- Attachment upload, retrieval and deletion
"""

from io import BytesIO

from conftest import FNR, make_attachment, make_token
from ettersending_api.errors import AccessDeniedError, DispatchFailure
from ettersending_api.models import HealthResult


class TestOps:
    def test_isalive_and_isready(self, client):
        assert client.get("/isalive").text == "ALIVE"
        assert client.get("/isready").text == "READY"

    def test_health_up(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "UP"

    def test_health_down(self, client, dispatcher):
        dispatcher.check.return_value = HealthResult(name="mottak", healthy=False, message="nede")
        assert client.get("/health").status_code == 503

    def test_correlation_id_is_echoed(self, client):
        response = client.get("/isalive", headers={"X-Correlation-ID": "abc-123"})
        assert response.headers["X-Correlation-ID"] == "abc-123"

    def test_correlation_id_is_generated(self, client):
        assert client.get("/isalive").headers["X-Correlation-ID"].startswith("generated-")


class TestSendEttersending:
    def test_accepted(self, client, submission_payload, auth_headers, dispatcher, attachment_gateway):
        response = client.post("/ettersend", json=submission_payload, headers={**auth_headers, "X-Correlation-ID": "c-1"})

        assert response.status_code == 202
        assert response.content == b""
        dispatcher.submit.assert_awaited_once()
        assert dispatcher.submit.await_args.args[1].correlation_id == "c-1"
        attachment_gateway.release_hold.assert_not_awaited()

    def test_token_from_cookie(self, client, submission_payload):
        headers = {"Cookie": f"selvbetjening-idtoken={make_token()}"}
        assert client.post("/ettersend", json=submission_payload, headers=headers).status_code == 202

    def test_missing_token(self, client, submission_payload):
        response = client.post("/ettersend", json=submission_payload)
        assert response.status_code == 401
        assert response.headers["content-type"] == "application/problem+json"

    def test_validation_problem_details(self, client, submission_payload, auth_headers, applicant_service):
        submission_payload["vedlegg"] = []
        submission_payload["harBekreftetOpplysninger"] = False

        response = client.post("/ettersend", json=submission_payload, headers=auth_headers)

        assert response.status_code == 400
        body = response.json()
        assert body["title"] == "invalid-request-parameters"
        assert body["status"] == 400
        assert body["instance"] == "/ettersend"
        names = {parameter["name"] for parameter in body["invalid_parameters"]}
        assert names == {"vedlegg", "harBekreftetOpplysninger"}
        applicant_service.get_applicant.assert_not_awaited()

    def test_unparseable_body_is_400(self, client, submission_payload, auth_headers):
        submission_payload["søknadstype"] = "UKJENT"
        del submission_payload["språk"]

        response = client.post("/ettersend", json=submission_payload, headers=auth_headers)

        assert response.status_code == 400
        names = {parameter["name"] for parameter in response.json()["invalid_parameters"]}
        assert names == {"søknadstype", "språk"}

    def test_missing_attachment(self, client, submission_payload, auth_headers, attachment_gateway):
        attachment_gateway.fetch_many.return_value = [make_attachment("vedlegg-1")]

        response = client.post("/ettersend", json=submission_payload, headers=auth_headers)

        assert response.status_code == 400
        parameter = response.json()["invalid_parameters"][0]
        assert parameter["invalid_value"] == submission_payload["vedlegg"]

    def test_underage_applicant_is_451(self, client, submission_payload, auth_headers, applicant_service, underage_applicant):
        applicant_service.get_applicant.return_value = underage_applicant
        assert client.post("/ettersend", json=submission_payload, headers=auth_headers).status_code == 451

    def test_upstream_denial_is_451(self, client, submission_payload, auth_headers, applicant_service):
        applicant_service.get_applicant.side_effect = AccessDeniedError()
        assert client.post("/ettersend", json=submission_payload, headers=auth_headers).status_code == 451

    def test_dispatch_failure_is_500_and_compensated(
        self, client, submission_payload, auth_headers, dispatcher, attachment_gateway
    ):
        dispatcher.submit.side_effect = DispatchFailure()

        response = client.post("/ettersend", json=submission_payload, headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["title"] == "innsending-feilet"
        attachment_gateway.release_hold.assert_awaited_once()


class TestValiderEttersending:
    def test_valid(self, client, submission_payload):
        assert client.post("/ettersending/valider", json=submission_payload).status_code == 202

    def test_invalid(self, client, submission_payload, applicant_service):
        submission_payload["beskrivelse"] = "  "
        response = client.post("/ettersending/valider", json=submission_payload)
        assert response.status_code == 400
        assert response.json()["invalid_parameters"][0]["name"] == "beskrivelse"
        applicant_service.get_applicant.assert_not_awaited()


class TestSoker:
    def test_get_soker(self, client, auth_headers):
        response = client.get("/soker", headers=auth_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["fødselsnummer"] == FNR
        assert body["aktørId"] == "12345"
        assert body["myndig"] is True

    def test_get_soker_denied(self, client, auth_headers, applicant_service):
        applicant_service.get_applicant.side_effect = AccessDeniedError(
            reasons=[{"name": "fødselsdato", "reason": "Søker er under 18 år.", "invalid_value": "2010-01-01"}]
        )
        response = client.get("/soker", headers=auth_headers)
        assert response.status_code == 451
        body = response.json()
        assert body["type"] == "/problem-details/tilgangskontroll-feil"
        assert body["invalid_parameters"] == [
            {"type": "entity", "name": "fødselsdato", "reason": "Søker er under 18 år.", "invalid_value": "2010-01-01"}
        ]


class TestVedlegg:
    def test_upload(self, client, auth_headers, attachment_gateway):
        attachment_gateway.store.return_value = "new-id"

        response = client.post(
            "/vedlegg",
            files={"vedlegg": ("legeerklaering.pdf", BytesIO(b"%PDF-1.4"), "application/pdf")},
            headers=auth_headers,
        )

        assert response.status_code == 201
        assert response.headers["Location"].endswith("/vedlegg/new-id")
        stored = attachment_gateway.store.await_args.args[0]
        assert stored.title == "legeerklaering.pdf"
        assert stored.owner.owner_id == FNR

    def test_upload_unsupported_content_type(self, client, auth_headers):
        response = client.post(
            "/vedlegg", files={"vedlegg": ("notes.txt", BytesIO(b"hei"), "text/plain")}, headers=auth_headers
        )
        assert response.status_code == 400

    def test_upload_too_large(self, client, auth_headers):
        content = b"x" * (8 * 1024 * 1024 + 1)
        response = client.post(
            "/vedlegg", files={"vedlegg": ("big.pdf", BytesIO(content), "application/pdf")}, headers=auth_headers
        )
        assert response.status_code == 413

    def test_upload_without_part(self, client, auth_headers):
        response = client.post("/vedlegg", files={"annet": ("a.pdf", BytesIO(b"x"), "application/pdf")}, headers=auth_headers)
        assert response.status_code == 400

    def test_get(self, client, auth_headers, attachment_gateway):
        attachment_gateway.fetch.return_value = make_attachment("abc", size=3)
        response = client.get("/vedlegg/abc", headers=auth_headers)
        assert response.status_code == 200
        assert response.content == b"xxx"
        assert response.headers["content-type"] == "application/pdf"

    def test_get_not_found(self, client, auth_headers, attachment_gateway):
        attachment_gateway.fetch.return_value = None
        assert client.get("/vedlegg/abc", headers=auth_headers).status_code == 404

    def test_delete(self, client, auth_headers, attachment_gateway):
        attachment_gateway.delete.return_value = True
        assert client.delete("/vedlegg/abc", headers=auth_headers).status_code == 204

    def test_delete_failure(self, client, auth_headers, attachment_gateway):
        attachment_gateway.delete.return_value = False
        assert client.delete("/vedlegg/abc", headers=auth_headers).status_code == 500
