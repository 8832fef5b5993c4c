"""Mapping from an accepted submission to the record sent downstream."""

from __future__ import annotations

import base64
from datetime import datetime
from typing import Dict, List, Sequence

from .errors import ConfigurationError
from .models import (
    LEGAL_AGE,
    Applicant,
    ApplicantSnapshot,
    Attachment,
    AttachmentForwarding,
    AttachmentSnapshot,
    CanonicalRecord,
    K9Ettersendelse,
    K9Soker,
    Submission,
    SubmissionType,
    Ytelse,
)
from .utils import attachment_ids, build_url

YTELSE_BY_SUBMISSION_TYPE: Dict[SubmissionType, Ytelse] = {
    SubmissionType.PLEIEPENGER_SYKT_BARN: Ytelse.PLEIEPENGER_SYKT_BARN,
    SubmissionType.PLEIEPENGER_LIVETS_SLUTTFASE: Ytelse.PLEIEPENGER_LIVETS_SLUTTFASE,
    SubmissionType.OMP_UTV_KS: Ytelse.OMP_UTV_KS,
    SubmissionType.OMP_UTV_MA: Ytelse.OMP_UTV_MA,
    SubmissionType.OMP_UT_SNF: Ytelse.OMP_UT,
    SubmissionType.OMP_UT_ARBEIDSTAKER: Ytelse.OMP_UT,
    SubmissionType.OMP_DELE_DAGER: Ytelse.OMP_DELE_DAGER,
}


def _check_ytelse_mapping() -> None:
    missing = [submission_type.value for submission_type in SubmissionType if submission_type not in YTELSE_BY_SUBMISSION_TYPE]
    if missing:
        raise ConfigurationError(f"Mangler ytelse for søknadstype(r): {missing}")


_check_ytelse_mapping()


def to_k9_format(submission: Submission, applicant: Applicant, received_at: datetime) -> K9Ettersendelse:
    return K9Ettersendelse(
        soknad_id=submission.submission_id,
        mottatt_dato=received_at,
        soker=K9Soker(norsk_identitetsnummer=applicant.external_id),
        ytelse=YTELSE_BY_SUBMISSION_TYPE[submission.submission_type],
    )


class CanonicalRecordBuilder:
    """
    Builds the ``CanonicalRecord`` for an accepted submission.

    Args:
        storage_ingress: Public base URL of the attachment store; attachment
            references are rewritten against it so downstream can resolve them.
        forwarding: Whether attachments travel by reference only or also by value.
    """

    def __init__(self, storage_ingress: str, forwarding: AttachmentForwarding = AttachmentForwarding.REFERENCE) -> None:
        self.storage_ingress = storage_ingress
        self.forwarding = forwarding

    def _document_url(self, attachment_id: str) -> str:
        return build_url(self.storage_ingress, "v1", "dokument", attachment_id)

    def build(
        self,
        submission: Submission,
        applicant: Applicant,
        received_at: datetime,
        attachments: Sequence[Attachment],
        legal_age: int = LEGAL_AGE,
    ) -> CanonicalRecord:
        ids = attachment_ids(submission.attachment_refs)
        snapshots: List[AttachmentSnapshot] | None = None
        if self.forwarding == AttachmentForwarding.VALUE:
            snapshots = [
                AttachmentSnapshot(
                    content=base64.b64encode(attachment.content).decode("ascii"),
                    content_type=attachment.content_type,
                    title=attachment.title,
                )
                for attachment in attachments
            ]

        return CanonicalRecord(
            submission_id=submission.submission_id,
            applicant=ApplicantSnapshot(
                **applicant.model_dump(),
                myndig=applicant.is_of_legal_age(today=received_at.date(), legal_age=legal_age),
            ),
            language=submission.language,
            received_at=received_at,
            attachment_ids=ids,
            attachment_urls=[self._document_url(attachment_id) for attachment_id in ids],
            titles=[attachment.title for attachment in attachments],
            attachments=snapshots,
            has_understood_rights_and_obligations=submission.has_understood_rights_and_obligations,
            has_confirmed_information=submission.has_confirmed_information,
            description=submission.description,
            submission_type=submission.submission_type,
            k9_format=to_k9_format(submission, applicant, received_at),
        )
