"""
CaseFlow - Intake Form Models

Typed sections of a fraud complaint submission. Older clients post camelCase
keys (phoneNumber, upiId, ifscCode, ...); those are accepted as aliases.
Any top-level key no section recognises is kept in the `extra` bucket rather
than dropped, so nothing the reporter typed is lost.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_validator, model_validator

from .db_models import CasePriority


class _Section(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class PersonalInfo(_Section):
    full_name: Optional[str] = Field(None, validation_alias=AliasChoices("full_name", "fullName", "name"))
    date_of_birth: Optional[date] = Field(None, validation_alias=AliasChoices("date_of_birth", "dateOfBirth"))
    gender: Optional[str] = None


class ContactInfo(_Section):
    email: Optional[str] = None
    phone: Optional[str] = Field(None, validation_alias=AliasChoices("phone", "phoneNumber"))
    alternate_phone: Optional[str] = Field(None, validation_alias=AliasChoices("alternate_phone", "alternatePhone"))


class AddressInfo(_Section):
    line1: Optional[str] = Field(None, validation_alias=AliasChoices("line1", "streetAddress", "street"))
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = Field(None, validation_alias=AliasChoices("pincode", "postalCode", "zip"))

    def one_line(self) -> Optional[str]:
        parts = [p for p in (self.line1, self.city, self.state, self.pincode) if p]
        return ", ".join(parts) if parts else None


class GovernmentId(_Section):
    id_type: str = Field(..., validation_alias=AliasChoices("id_type", "idType", "type"))
    id_number: str = Field(..., validation_alias=AliasChoices("id_number", "idNumber", "number"))


class IncidentInfo(_Section):
    platform: Optional[str] = None
    transaction_id: Optional[str] = Field(None, validation_alias=AliasChoices("transaction_id", "transactionId"))
    payment_method: Optional[str] = Field(None, validation_alias=AliasChoices("payment_method", "paymentMethod"))


class EvidenceItem(_Section):
    name: str
    kind: Optional[str] = Field(None, validation_alias=AliasChoices("kind", "type", "mimeType"))
    reference: Optional[str] = Field(None, validation_alias=AliasChoices("reference", "url", "path"))


# Identifiers that can link two reports to the same scammer
SCAMMER_IDENTIFIER_FIELDS = ("phone", "email", "payment_handle", "bank_account", "routing_code")


class ScammerDetails(_Section):
    """Suspect details as reported by the victim."""
    name: Optional[str] = None
    phone: Optional[str] = Field(None, validation_alias=AliasChoices("phone", "phoneNumber"))
    email: Optional[str] = None
    payment_handle: Optional[str] = Field(None, validation_alias=AliasChoices("payment_handle", "upiId", "upi_id"))
    bank_account: Optional[str] = Field(None, validation_alias=AliasChoices("bank_account", "bankAccount"))
    routing_code: Optional[str] = Field(None, validation_alias=AliasChoices("routing_code", "ifscCode", "ifsc_code", "ifsc"))
    address: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    def identifiers(self) -> Dict[str, str]:
        """Non-empty matchable identifiers."""
        return {f: getattr(self, f) for f in SCAMMER_IDENTIFIER_FIELDS if getattr(self, f)}

    def has_identifiers(self) -> bool:
        return bool(self.identifiers())


class IntakeSubmission(BaseModel):
    """A complete complaint as submitted by the reporter."""
    model_config = ConfigDict(populate_by_name=True)

    case_type: str = Field(..., validation_alias=AliasChoices("case_type", "caseType"))
    description: str
    amount: float = Field(..., ge=0)
    incident_date: datetime = Field(..., validation_alias=AliasChoices("incident_date", "incidentDate"))
    location: str
    priority: CasePriority = CasePriority.MEDIUM

    personal_info: PersonalInfo = Field(default_factory=PersonalInfo, validation_alias=AliasChoices("personal_info", "personalInfo"))
    contact_info: ContactInfo = Field(default_factory=ContactInfo, validation_alias=AliasChoices("contact_info", "contactInfo"))
    address: AddressInfo = Field(default_factory=AddressInfo, validation_alias=AliasChoices("address", "addressInfo"))
    government_ids: List[GovernmentId] = Field(default_factory=list, validation_alias=AliasChoices("government_ids", "governmentIds"))
    incident_info: IncidentInfo = Field(default_factory=IncidentInfo, validation_alias=AliasChoices("incident_info", "incidentInfo"))
    scammer: Optional[ScammerDetails] = Field(None, validation_alias=AliasChoices("scammer", "scammerDetails", "scammerInfo"))
    evidence: List[EvidenceItem] = Field(default_factory=list)

    extra: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def collect_unknown_keys(cls, data):
        if not isinstance(data, dict):
            return data
        known = set()
        for name, field in cls.model_fields.items():
            known.add(name)
            alias = field.validation_alias
            if isinstance(alias, AliasChoices):
                known.update(a for a in alias.choices if isinstance(a, str))
        unknown = {k: v for k, v in data.items() if k not in known}
        if not unknown:
            return data
        existing = data.get("extra") or {}
        if not isinstance(existing, dict):
            raise ValueError("extra must be an object")
        cleaned = {k: v for k, v in data.items() if k in known}
        cleaned["extra"] = {**existing, **unknown}
        return cleaned

    @field_validator("case_type", "description", "location")
    @classmethod
    def required_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    def victim_name(self, fallback: Optional[str] = None) -> Optional[str]:
        return self.personal_info.full_name or fallback
