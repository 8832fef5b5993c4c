"""
Validation of inbound submissions and of the attachments they reference.

``validate`` is pure: it performs no I/O and collects every violation instead
of stopping at the first one. The attachment checks run after the attachments
have been fetched, but before anything is persisted.
"""

from __future__ import annotations

from typing import Callable, List, Sequence

from .errors import AttachmentsTooLargeError, ValidationError
from .models import Attachment, InvalidParameter, Submission, SubmissionType

MAX_TOTAL_ATTACHMENT_BYTES = 24 * 1024 * 1024  # 3 vedlegg på 8 MB


def _pleiepenger_only(submission_type: SubmissionType) -> bool:
    return submission_type == SubmissionType.PLEIEPENGER_SYKT_BARN


class SubmissionValidator:
    """
    Business rules for a submission.

    Args:
        description_required: Decides per submission type whether a
            non-blank ``beskrivelse`` is mandatory.
    """

    def __init__(self, description_required: Callable[[SubmissionType], bool] = _pleiepenger_only) -> None:
        self._description_required = description_required

    def violations(self, submission: Submission) -> List[InvalidParameter]:
        violations: List[InvalidParameter] = []

        description = submission.description
        if self._description_required(submission.submission_type) and (description is None or not description.strip()):
            violations.append(
                InvalidParameter(
                    name="beskrivelse",
                    reason=(
                        "Beskrivelse kan ikke være tom eller blank dersom det gjelder "
                        f"{submission.submission_type.value}"
                    ),
                    invalid_value=description,
                )
            )

        if not submission.attachment_refs:
            violations.append(
                InvalidParameter(
                    name="vedlegg",
                    reason="Listen over vedlegg kan ikke være tom",
                    invalid_value=list(submission.attachment_refs),
                )
            )

        if not submission.has_confirmed_information:
            violations.append(
                InvalidParameter(
                    name="harBekreftetOpplysninger",
                    reason="Opplysningene må bekreftes for å sende inn ettersending.",
                    invalid_value=False,
                )
            )

        if not submission.has_understood_rights_and_obligations:
            violations.append(
                InvalidParameter(
                    name="harForståttRettigheterOgPlikter",
                    reason="Må ha forstått rettigheter og plikter for å sende inn ettersending.",
                    invalid_value=False,
                )
            )

        return violations

    def validate(self, submission: Submission) -> None:
        violations = self.violations(submission)
        if violations:
            raise ValidationError(invalid_parameters=violations)


def validate_attachments(
    attachments: Sequence[Attachment],
    references: Sequence[str],
    max_total_bytes: int = MAX_TOTAL_ATTACHMENT_BYTES,
) -> None:
    """Check that every reference resolved and that the total size is within bounds."""
    if len(attachments) != len(references):
        raise ValidationError(
            invalid_parameters=[
                InvalidParameter(
                    name="vedlegg",
                    reason=(
                        f"Received reference to {len(references)} attachments, "
                        f"but found only {len(attachments)}."
                    ),
                    invalid_value=list(references),
                )
            ]
        )

    total_size = sum(attachment.size for attachment in attachments)
    if total_size > max_total_bytes:
        raise AttachmentsTooLargeError(
            f"Totale størrelsen på alle vedlegg ({total_size} bytes) overstiger maks på {max_total_bytes} bytes."
        )
