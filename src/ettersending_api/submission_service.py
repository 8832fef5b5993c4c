"""
Registration of an ettersending from inbound request to downstream hand-off.

The flow is strictly ordered:

1. Validate the submission (no I/O).
2. Resolve the applicant and check that they are of legal age.
3. Fetch every referenced attachment, then reconcile count and total size.
4. Persist the attachments, the first state-changing step. Holds set before
   a partial failure are released again.
5. Build the canonical record and dispatch it.

A dispatch failure releases the hold on the attachments persisted in step 4
before the failure is raised to the caller.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable, Optional

from .applicant import ApplicantService
from .attachments import AttachmentGateway
from .auth import IdToken
from .errors import AttachmentHoldError, ConfigurationError, DispatchFailure, UnderageApplicantError
from .dispatch import Dispatcher
from .k9format import CanonicalRecordBuilder
from .models import LEGAL_AGE, Applicant, DocumentOwner, Metadata, Submission
from .utils import attachment_ids, format_status_log
from .validation import MAX_TOTAL_ATTACHMENT_BYTES, SubmissionValidator, validate_attachments

METADATA_VERSION = 1


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EttersendingService:
    def __init__(
        self,
        validator: SubmissionValidator,
        applicant_service: ApplicantService,
        attachment_gateway: AttachmentGateway,
        record_builder: CanonicalRecordBuilder,
        dispatcher: Dispatcher,
        max_total_attachment_bytes: int = MAX_TOTAL_ATTACHMENT_BYTES,
        legal_age: int = LEGAL_AGE,
        clock: Callable[[], datetime] = _utc_now,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.validator = validator
        self.applicant_service = applicant_service
        self.attachment_gateway = attachment_gateway
        self.record_builder = record_builder
        self.dispatcher = dispatcher
        self.max_total_attachment_bytes = max_total_attachment_bytes
        self.legal_age = legal_age
        self.clock = clock
        self._logger = logger or logging.getLogger(__name__)

    def validate(self, submission: Submission) -> None:
        self.validator.validate(submission)

    def _require_legal_age(self, applicant: Applicant) -> None:
        today: date = self.clock().date()
        if not applicant.is_of_legal_age(today=today, legal_age=self.legal_age):
            raise UnderageApplicantError()

    async def register(self, submission: Submission, id_token: IdToken, call_id: str) -> None:
        self._logger.info(format_status_log(submission.submission_id, "registreres"))
        self.validator.validate(submission)

        applicant = await self.applicant_service.get_applicant(id_token, call_id)
        self._require_legal_age(applicant)

        owner = DocumentOwner(owner_id=applicant.external_id)
        self._logger.info(f"Validerer {len(submission.attachment_refs)} vedlegg")
        attachments = await self.attachment_gateway.fetch_many(submission.attachment_refs, owner, id_token, call_id)
        validate_attachments(attachments, submission.attachment_refs, self.max_total_attachment_bytes)

        self._logger.info("Persisterer vedlegg")
        ids = attachment_ids(submission.attachment_refs)
        try:
            await self.attachment_gateway.persist(ids, owner, call_id)
        except AttachmentHoldError as exc:
            if exc.completed_ids:
                self._logger.info(f"Persistering feilet delvis. Fjerner hold på {exc.completed_ids}")
                await self._release_hold(exc.completed_ids, owner, call_id, submission.submission_id)
            raise

        try:
            record = self.record_builder.build(
                submission, applicant, self.clock(), attachments, legal_age=self.legal_age
            )
            await self.dispatcher.submit(record, Metadata(version=METADATA_VERSION, correlation_id=call_id))
        except Exception as exc:
            self._logger.info("Feilet ved innsending til prosessering. Fjerner hold på persisterte vedlegg")
            await self._release_hold(ids, owner, call_id, submission.submission_id)
            if isinstance(exc, (DispatchFailure, ConfigurationError)):
                raise
            raise DispatchFailure("Feilet ved innsending til prosessering.") from exc

        self._logger.info(format_status_log(submission.submission_id, "registrert"))

    async def _release_hold(self, ids, owner: DocumentOwner, call_id: str, submission_id: str) -> None:
        try:
            await self.attachment_gateway.release_hold(ids, owner, call_id)
        except Exception as exc:  # noqa: BLE001
            self._logger.error(
                format_status_log(submission_id, f"kunne ikke fjerne hold på vedlegg {ids}: {exc!r}")
            )
