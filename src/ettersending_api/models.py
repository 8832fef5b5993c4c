from __future__ import annotations

import base64
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SubmissionType(str, Enum):
    PLEIEPENGER_SYKT_BARN = "PLEIEPENGER_SYKT_BARN"
    # Omsorgspenger utvidet rett - kronisk syke eller funksjonshemming
    OMP_UTV_KS = "OMP_UTV_KS"
    OMP_UT_SNF = "OMP_UT_SNF"
    OMP_UT_ARBEIDSTAKER = "OMP_UT_ARBEIDSTAKER"
    # Omsorgspenger utvidet rett - midlertidig alene
    OMP_UTV_MA = "OMP_UTV_MA"
    OMP_DELE_DAGER = "OMP_DELE_DAGER"
    PLEIEPENGER_LIVETS_SLUTTFASE = "PLEIEPENGER_LIVETS_SLUTTFASE"


LEGAL_AGE = 18

# Older frontends still send the lowercase names
SUBMISSION_TYPE_ALIASES: Dict[str, SubmissionType] = {
    "pleiepenger": SubmissionType.PLEIEPENGER_SYKT_BARN,
    "omsorgspenger": SubmissionType.OMP_UTV_KS,
}


class Ytelse(str, Enum):
    PLEIEPENGER_SYKT_BARN = "PLEIEPENGER_SYKT_BARN"
    PLEIEPENGER_LIVETS_SLUTTFASE = "PLEIEPENGER_LIVETS_SLUTTFASE"
    OMP_UTV_KS = "OMP_UTV_KS"
    OMP_UTV_MA = "OMP_UTV_MA"
    OMP_UT = "OMP_UT"
    OMP_DELE_DAGER = "OMP_DELE_DAGER"


class AttachmentForwarding(str, Enum):
    REFERENCE = "reference"
    VALUE = "value"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Submission(_CamelModel):
    """An inbound ettersending as posted by the frontend."""

    submission_id: str = Field(default_factory=lambda: str(uuid4()), alias="søknadId")
    language: str = Field(alias="språk")
    attachment_refs: List[str] = Field(alias="vedlegg")
    has_understood_rights_and_obligations: bool = Field(alias="harForståttRettigheterOgPlikter")
    has_confirmed_information: bool = Field(alias="harBekreftetOpplysninger")
    description: Optional[str] = Field(default=None, alias="beskrivelse")
    submission_type: SubmissionType = Field(alias="søknadstype")

    @field_validator("submission_type", mode="before")
    @classmethod
    def _accept_legacy_type_names(cls, value: Any) -> Any:
        if isinstance(value, str) and value in SUBMISSION_TYPE_ALIASES:
            return SUBMISSION_TYPE_ALIASES[value]
        return value


class Applicant(_CamelModel):
    external_id: str = Field(alias="fødselsnummer")
    internal_id: str = Field(alias="aktørId")
    date_of_birth: date = Field(alias="fødselsdato")
    first_name: str = Field(alias="fornavn")
    middle_name: Optional[str] = Field(default=None, alias="mellomnavn")
    last_name: str = Field(alias="etternavn")

    def is_of_legal_age(self, today: Optional[date] = None, legal_age: int = LEGAL_AGE) -> bool:
        today = today or date.today()
        dob = self.date_of_birth
        age = today.year - dob.year - ((today.month, today.day) < (dob.month, dob.day))
        return age >= legal_age


class ApplicantSnapshot(Applicant):
    """The applicant as recorded downstream, with the legal-age verdict made at receipt."""

    myndig: bool


class DocumentOwner(_CamelModel):
    owner_id: str = Field(alias="eiers_fødselsnummer")


class Attachment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    attachment_id: Optional[str] = None
    content: bytes
    content_type: str
    title: str
    owner: DocumentOwner

    @property
    def size(self) -> int:
        return len(self.content)

    def to_storage_payload(self) -> Dict[str, Any]:
        return {
            "content": base64.b64encode(self.content).decode("ascii"),
            "content_type": self.content_type,
            "title": self.title,
            "eier": self.owner.model_dump(by_alias=True),
        }


class Metadata(_CamelModel):
    version: int
    correlation_id: str = Field(alias="correlationId")


class K9Soker(_CamelModel):
    norsk_identitetsnummer: str = Field(alias="norskIdentitetsnummer")


class K9Ettersendelse(_CamelModel):
    soknad_id: str = Field(alias="søknadId")
    versjon: str = "0.0.1"
    mottatt_dato: datetime = Field(alias="mottattDato")
    soker: K9Soker = Field(alias="søker")
    ytelse: Ytelse


class AttachmentSnapshot(_CamelModel):
    content: str
    content_type: str = Field(alias="contentType")
    title: str


class CanonicalRecord(_CamelModel):
    """The complete ettersending handed to the downstream intake."""

    submission_id: str = Field(alias="søknadId")
    applicant: ApplicantSnapshot = Field(alias="søker")
    language: str = Field(alias="språk")
    received_at: datetime = Field(alias="mottatt")
    attachment_ids: List[str] = Field(alias="vedleggId")
    attachment_urls: List[str] = Field(alias="vedleggUrls")
    titles: List[str] = Field(alias="titler")
    attachments: Optional[List[AttachmentSnapshot]] = Field(default=None, alias="vedlegg")
    has_understood_rights_and_obligations: bool = Field(alias="harForståttRettigheterOgPlikter")
    has_confirmed_information: bool = Field(alias="harBekreftetOpplysninger")
    description: Optional[str] = Field(default=None, alias="beskrivelse")
    submission_type: SubmissionType = Field(alias="søknadstype")
    k9_format: K9Ettersendelse = Field(alias="k9Format")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class InvalidParameter(BaseModel):
    type: str = "entity"
    name: str
    reason: str
    invalid_value: Any = None


class ProblemDetails(BaseModel):
    type: str
    title: str
    status: int
    detail: str
    instance: str = "about:blank"
    invalid_parameters: Optional[List[InvalidParameter]] = None


class HealthResult(BaseModel):
    name: str
    healthy: bool
    message: str
