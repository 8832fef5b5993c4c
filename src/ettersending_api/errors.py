"""
Exception hierarchy for the ettersending API.

Every error knows the problem-details document it is rendered as, so route
handlers only raise and the exception handlers in ``main`` do the mapping.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Optional

from .models import InvalidParameter, ProblemDetails


class EttersendingError(Exception):
    status: int = 500
    title: str = "unhandled-error"
    detail: str = "En uventet feil oppstod."

    def __init__(
        self,
        detail: Optional[str] = None,
        invalid_parameters: Optional[Iterable[InvalidParameter]] = None,
    ) -> None:
        self.detail = detail or self.detail
        self.invalid_parameters: List[InvalidParameter] = list(invalid_parameters or [])
        super().__init__(self.detail)

    @property
    def type(self) -> str:
        return f"/problem-details/{self.title}"

    def to_problem_details(self, instance: str = "about:blank") -> ProblemDetails:
        return ProblemDetails(
            type=self.type,
            title=self.title,
            status=self.status,
            detail=self.detail,
            instance=instance,
            invalid_parameters=self.invalid_parameters or None,
        )


class ValidationError(EttersendingError):
    status = 400
    title = "invalid-request-parameters"
    detail = "Requesten inneholder ugyldige paramtere."

    @property
    def violations(self) -> List[InvalidParameter]:
        return self.invalid_parameters


class AttachmentsTooLargeError(ValidationError):
    status = 413
    title = "attachments-too-large"
    detail = "Totale størrelsen på alle vedlegg overstiger maks på 24 MB."


class MissingTokenError(EttersendingError):
    status = 401
    title = "unauthorized"
    detail = "Ingen gyldig innlogging funnet i cookie eller Authorization header."


class AuthorizationError(EttersendingError):
    status = 403
    title = "forbidden"
    detail = "Ikke tilgang til tjenesten."


def _denial_parameter(reason: Any) -> InvalidParameter:
    if isinstance(reason, dict) and reason.get("name"):
        return InvalidParameter(
            type=str(reason.get("type") or "entity"),
            name=str(reason["name"]),
            reason=str(reason.get("reason") or "Tilgang nektet."),
            invalid_value=reason.get("invalid_value"),
        )
    return InvalidParameter(name="søker", reason=str(reason))


class AccessDeniedError(AuthorizationError):
    """Refusal from the lookup service. Its reasons are rendered as ``invalid_parameters``."""

    status = 451
    title = "tilgangskontroll-feil"
    detail = "Tilgang nektet."

    def __init__(self, detail: Optional[str] = None, reasons: Optional[List[Any]] = None) -> None:
        self.reasons = list(reasons or [])
        super().__init__(detail, invalid_parameters=[_denial_parameter(reason) for reason in self.reasons])


class UnderageApplicantError(AuthorizationError):
    status = 451
    title = "unauthorized"
    detail = "Søker er ikke myndig og kan ikke sende inn ettersending."


class UpstreamUnavailableError(EttersendingError):
    status = 503
    title = "upstream-unavailable"
    detail = "Tjenesten er midlertidig utilgjengelig."


class AttachmentHoldError(UpstreamUnavailableError):
    detail = "Feil ved oppdatering av hold på vedlegg."

    def __init__(self, detail: Optional[str] = None, completed_ids: Optional[Iterable[str]] = None) -> None:
        super().__init__(detail)
        self.completed_ids: List[str] = list(completed_ids or [])


class MalformedUpstreamResponseError(EttersendingError):
    status = 502
    title = "malformed-upstream-response"
    detail = "Ugyldig svar fra bakenforliggende tjeneste."


class DispatchFailure(EttersendingError):
    status = 500
    title = "innsending-feilet"
    detail = "Feilet ved innsending av ettersending til prosessering."


class ConfigurationError(EttersendingError):
    status = 500
    title = "configuration-error"
    detail = "Tjenesten er feilkonfigurert."


class AttachmentNotFoundError(EttersendingError):
    status = 404
    title = "attachment-not-found"
    detail = "Inget vedlegg funnet med etterspurt ID."


class AttachmentRejectedError(EttersendingError):
    status = 400
    title = "attachment-not-attached"
    detail = "Fant ingen 'part' som er en fil, har 'name=vedlegg' og har Content-Type header satt."


class AttachmentTooLargeError(EttersendingError):
    status = 413
    title = "attachment-too-large"
    detail = "Vedlegget var over maks tillatt størrelse på 8MB."


class AttachmentDeletionError(EttersendingError):
    status = 500
    title = "feil-ved-sletting"
    detail = "Feil ved sletting av vedlegg"
