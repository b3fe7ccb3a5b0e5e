"""
Domain records persisted as JSON blobs.

Every record is a dataclass with:
    to_dict()    camelCase JSON shape used on the wire and in storage
    from_dict()  parse a stored / submitted mapping back into the record

Usage:
    from onboarding_hub.models.records import PartnerRecord, QuestionnaireTemplate

    partner = PartnerRecord.from_dict(blob)
    blob = partner.to_dict()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from onboarding_hub.core.exceptions import MalformedCriteriaError, ValidationError
from onboarding_hub.models.gates import GATE_ORDER, GateStatus
from onboarding_hub.utils.helpers import to_iso


# ═════════════════════════════════════════════════════════════════════════════
# Identity
# ═════════════════════════════════════════════════════════════════════════════

class Role(str, Enum):
    """Closed set of hub roles. PDM doubles as the administrator role."""
    PAM = "PAM"
    PDM = "PDM"

    @classmethod
    def parse(cls, value) -> "Role":
        try:
            return cls(value)
        except ValueError as exc:
            raise ValidationError(
                f"role must be one of {[r.value for r in cls]}",
                details={"role": str(value)},
            ) from exc


@dataclass(frozen=True)
class AuthUser:
    """Authenticated caller, rebuilt per request from the session token."""
    id: str
    email: str
    role: Role
    name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.PDM

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role.value,
            "name": self.name,
        }


@dataclass(frozen=True)
class Session:
    """Explicit session value handed to each request by the session middleware."""
    user: AuthUser
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "user": self.user.to_dict(),
            "issuedAt": to_iso(self.issued_at),
            "expiresAt": to_iso(self.expires_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# Partners & gate progress
# ═════════════════════════════════════════════════════════════════════════════

CONTRACT_TYPES = ("PPA", "Distribution", "Sales-Agent", "Other")
TIERS = ("tier-0", "tier-1", "tier-2")

# (attribute, wire key) for the flat partner attributes
_PARTNER_SCALARS = (
    ("partner_name", "partnerName"),
    ("pam_owner", "pamOwner"),
    ("pdm_owner", "pdmOwner"),
    ("tpm_owner", "tpmOwner"),
    ("psm_owner", "psmOwner"),
    ("tam_owner", "tamOwner"),
    ("contract_type", "contractType"),
    ("tier", "tier"),
    ("ccv", "ccv"),
    ("lrp", "lrp"),
    ("contract_signed_date", "contractSignedDate"),
    ("target_launch_date", "targetLaunchDate"),
    ("actual_launch_date", "actualLaunchDate"),
    ("onboarding_start_date", "onboardingStartDate"),
    ("current_gate", "currentGate"),
    ("created_at", "createdAt"),
    ("updated_at", "updatedAt"),
)


@dataclass
class Approval:
    """Sign-off recorded when a gate completes (or is overridden)."""
    approved_by: str
    approved_by_role: str
    approved_at: str
    notes: str | None = None
    signature: dict | None = None

    def to_dict(self) -> dict:
        return {
            "approvedBy": self.approved_by,
            "approvedByRole": self.approved_by_role,
            "approvedAt": self.approved_at,
            "notes": self.notes,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Approval":
        return cls(
            approved_by=data.get("approvedBy", ""),
            approved_by_role=data.get("approvedByRole", ""),
            approved_at=data.get("approvedAt", ""),
            notes=data.get("notes"),
            signature=data.get("signature"),
        )


@dataclass
class GateProgress:
    """Per-gate status and history on a partner record."""
    gate_id: str
    status: GateStatus = GateStatus.NOT_STARTED
    started_date: str | None = None
    completed_date: str | None = None
    questionnaires: dict[str, str] = field(default_factory=dict)  # questionnaireId → submissionId
    approvals: list[Approval] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "gateId": self.gate_id,
            "status": self.status.value,
            "startedDate": self.started_date,
            "completedDate": self.completed_date,
            "questionnaires": dict(self.questionnaires),
            "approvals": [a.to_dict() for a in self.approvals],
            "blockers": list(self.blockers),
        }

    @classmethod
    def from_dict(cls, gate_id: str, data: dict) -> "GateProgress":
        return cls(
            gate_id=data.get("gateId", gate_id),
            status=GateStatus(data.get("status", GateStatus.NOT_STARTED.value)),
            started_date=data.get("startedDate"),
            completed_date=data.get("completedDate"),
            questionnaires=dict(data.get("questionnaires") or {}),
            approvals=[Approval.from_dict(a) for a in data.get("approvals") or []],
            blockers=list(data.get("blockers") or []),
        )


@dataclass
class PartnerRecord:
    id: str
    partner_name: str
    pam_owner: str
    pdm_owner: str | None = None
    tpm_owner: str | None = None
    psm_owner: str | None = None
    tam_owner: str | None = None
    contract_type: str = "Other"
    tier: str = "tier-2"
    ccv: float = 0
    lrp: float = 0
    contract_signed_date: str | None = None
    target_launch_date: str | None = None
    actual_launch_date: str | None = None
    onboarding_start_date: str | None = None
    current_gate: str = GATE_ORDER[0]
    gates: dict[str, GateProgress] = field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None

    def gate(self, gate_id: str) -> GateProgress:
        """Progress entry for *gate_id*, created on first access."""
        if gate_id not in self.gates:
            self.gates[gate_id] = GateProgress(gate_id=gate_id)
        return self.gates[gate_id]

    def to_dict(self) -> dict:
        out = {"id": self.id}
        for attr, key in _PARTNER_SCALARS:
            out[key] = getattr(self, attr)
        out["gates"] = {gid: self.gates[gid].to_dict() for gid in GATE_ORDER if gid in self.gates}
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "PartnerRecord":
        kwargs = {"id": data["id"]}
        for attr, key in _PARTNER_SCALARS:
            if data.get(key) is not None:
                kwargs[attr] = data[key]
        kwargs.setdefault("partner_name", "")
        kwargs.setdefault("pam_owner", "")
        kwargs["gates"] = {
            gid: GateProgress.from_dict(gid, progress)
            for gid, progress in (data.get("gates") or {}).items()
        }
        return cls(**kwargs)


# ═════════════════════════════════════════════════════════════════════════════
# Templates
# ═════════════════════════════════════════════════════════════════════════════

FIELD_TYPES = ("text", "textarea", "number", "email", "select", "radio", "checkbox", "date")
OPTION_FIELD_TYPES = frozenset({"select", "radio", "checkbox"})
RULE_OPERATORS = ("equals", "notEquals", "greaterThan", "lessThan", "contains", "notContains", "in")
CRITERIA_TYPES = ("manual", "automatic")
DEFAULT_SECTION_ID = "main"


@dataclass
class QuestionField:
    id: str
    type: str
    label: str
    required: bool = False
    options: list[str] | None = None
    help_text: str | None = None
    placeholder: str | None = None
    order: int = 0
    section_id: str = DEFAULT_SECTION_ID
    removed: bool = False  # soft delete: kept for historical rendering

    def to_dict(self) -> dict:
        out = {
            "id": self.id,
            "type": self.type,
            "label": self.label,
            "required": self.required,
            "order": self.order,
            "sectionId": self.section_id,
            "removed": self.removed,
        }
        if self.options is not None:
            out["options"] = list(self.options)
        if self.help_text is not None:
            out["helpText"] = self.help_text
        if self.placeholder is not None:
            out["placeholder"] = self.placeholder
        return out

    @classmethod
    def from_dict(cls, data) -> "QuestionField":
        if not isinstance(data, dict):
            raise ValidationError("Each field must be an object")
        options = data.get("options")
        if options is not None and not isinstance(options, list):
            raise ValidationError(f"Field {data.get('id')!r} options must be a list")
        try:
            order = int(data.get("order", 0))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Field {data.get('id')!r} order must be an integer") from exc
        return cls(
            id=str(data.get("id") or ""),
            type=str(data.get("type") or ""),
            label=str(data.get("label") or ""),
            required=bool(data.get("required", False)),
            options=[str(o) for o in options] if options is not None else None,
            help_text=data.get("helpText"),
            placeholder=data.get("placeholder"),
            order=order,
            section_id=str(data.get("sectionId") or DEFAULT_SECTION_ID),
            removed=bool(data.get("removed", False)),
        )


@dataclass(frozen=True)
class Rule:
    """Canonical rule shape: ``{fieldId, operator, value, failureMessage?}``."""
    field_id: str
    operator: str
    value: Any = None
    failure_message: str | None = None

    def to_dict(self) -> dict:
        out = {"fieldId": self.field_id, "operator": self.operator, "value": self.value}
        if self.failure_message:
            out["failureMessage"] = self.failure_message
        return out

    @classmethod
    def from_dict(cls, data) -> "Rule":
        if not isinstance(data, dict):
            raise MalformedCriteriaError("Rule must be an object")
        if "fieldId" not in data:
            if "field" in data:
                raise MalformedCriteriaError("Rule uses the legacy 'field' key; use 'fieldId'")
            raise MalformedCriteriaError("Rule is missing 'fieldId'")
        if not isinstance(data["fieldId"], str) or not data["fieldId"]:
            raise MalformedCriteriaError("Rule 'fieldId' must be a non-empty string")
        if not isinstance(data.get("operator"), str):
            raise MalformedCriteriaError(f"Rule for {data['fieldId']!r} has no operator")
        return cls(
            field_id=data["fieldId"],
            operator=data["operator"],
            value=data.get("value"),
            failure_message=data.get("failureMessage") or None,
        )


@dataclass(frozen=True)
class PassFailCriteria:
    type: str
    rules: tuple[Rule, ...] = ()

    @property
    def is_manual(self) -> bool:
        return self.type == "manual"

    def to_dict(self) -> dict:
        return {"type": self.type, "rules": [r.to_dict() for r in self.rules]}

    @classmethod
    def from_dict(cls, data) -> "PassFailCriteria":
        if isinstance(data, PassFailCriteria):
            return data
        if not isinstance(data, dict):
            raise MalformedCriteriaError("passFailCriteria must be an object")
        ctype = data.get("type")
        if ctype not in CRITERIA_TYPES:
            raise MalformedCriteriaError(f"passFailCriteria type must be one of {list(CRITERIA_TYPES)}")
        rules = data.get("rules") or []
        if not isinstance(rules, list):
            raise MalformedCriteriaError("passFailCriteria rules must be a list")
        return cls(type=ctype, rules=tuple(Rule.from_dict(r) for r in rules))


@dataclass
class TemplateSection:
    id: str
    title: str
    description: str | None = None
    pass_fail_criteria: PassFailCriteria | None = None

    def to_dict(self) -> dict:
        out = {"id": self.id, "title": self.title}
        if self.description is not None:
            out["description"] = self.description
        if self.pass_fail_criteria is not None:
            out["passFailCriteria"] = self.pass_fail_criteria.to_dict()
        return out

    @classmethod
    def from_dict(cls, data) -> "TemplateSection":
        if not isinstance(data, dict):
            raise ValidationError("Each section must be an object")
        criteria = data.get("passFailCriteria")
        return cls(
            id=str(data.get("id") or ""),
            title=str(data.get("title") or ""),
            description=data.get("description"),
            pass_fail_criteria=PassFailCriteria.from_dict(criteria) if criteria is not None else None,
        )


def _parse_fields(raw) -> list[QuestionField]:
    if not isinstance(raw, list):
        raise ValidationError("fields must be a list")
    return [QuestionField.from_dict(f) for f in raw]


def _parse_sections(raw) -> list[TemplateSection]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("sections must be a list")
    return [TemplateSection.from_dict(s) for s in raw]


@dataclass
class QuestionnaireTemplate:
    """Current, editable definition of one gate's questionnaire."""
    id: str
    name: str
    version: int
    fields: list[QuestionField] = field(default_factory=list)
    sections: list[TemplateSection] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None
    updated_by: str | None = None

    @property
    def active_fields(self) -> list[QuestionField]:
        return sorted((f for f in self.fields if not f.removed), key=lambda f: f.order)

    def section(self, section_id: str) -> TemplateSection | None:
        return next((s for s in self.sections if s.id == section_id), None)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "fields": [f.to_dict() for f in self.fields],
            "sections": [s.to_dict() for s in self.sections],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "updatedBy": self.updated_by,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QuestionnaireTemplate":
        try:
            version = int(data.get("version") or 0)
        except (TypeError, ValueError) as exc:
            raise ValidationError("version must be an integer") from exc
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            version=version,
            fields=_parse_fields(data.get("fields", [])),
            sections=_parse_sections(data.get("sections")),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            updated_by=data.get("updatedBy"),
        )


@dataclass(frozen=True)
class TemplateVersion:
    """Immutable snapshot of a template's fields and sections at one version."""
    template_id: str
    version: int
    name: str
    fields: tuple[QuestionField, ...]
    sections: tuple[TemplateSection, ...]
    created_at: str
    created_by: str | None = None

    def as_template(self) -> QuestionnaireTemplate:
        """Template view of this snapshot, for rendering and re-evaluation."""
        return QuestionnaireTemplate(
            id=self.template_id,
            name=self.name,
            version=self.version,
            fields=list(self.fields),
            sections=list(self.sections),
            created_at=self.created_at,
            updated_at=self.created_at,
            updated_by=self.created_by,
        )

    def to_dict(self) -> dict:
        return {
            "templateId": self.template_id,
            "version": self.version,
            "name": self.name,
            "fields": [f.to_dict() for f in self.fields],
            "sections": [s.to_dict() for s in self.sections],
            "createdAt": self.created_at,
            "createdBy": self.created_by,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TemplateVersion":
        return cls(
            template_id=data["templateId"],
            version=int(data["version"]),
            name=data.get("name", ""),
            fields=tuple(_parse_fields(data.get("fields", []))),
            sections=tuple(_parse_sections(data.get("sections"))),
            created_at=data.get("createdAt", ""),
            created_by=data.get("createdBy"),
        )


# ═════════════════════════════════════════════════════════════════════════════
# Submissions
# ═════════════════════════════════════════════════════════════════════════════

SIGNATURE_TYPES = ("typed", "drawn")


class SectionResult(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    PENDING = "pending"


class OverallStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    PARTIAL = "partial"
    PENDING = "pending"


@dataclass
class Signature:
    type: str
    data: str
    signer_name: str
    signer_email: str
    timestamp: str
    ip_address: str | None = None
    user_agent: str | None = None

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "data": self.data,
            "signerName": self.signer_name,
            "signerEmail": self.signer_email,
            "timestamp": self.timestamp,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Signature":
        return cls(
            type=data.get("type", ""),
            data=data.get("data", ""),
            signer_name=data.get("signerName", ""),
            signer_email=data.get("signerEmail", ""),
            timestamp=data.get("timestamp", ""),
            ip_address=data.get("ipAddress"),
            user_agent=data.get("userAgent"),
        )


@dataclass
class SectionStatus:
    """Verdict for one section. ``derived`` carries computed values (e.g. CCV %)."""
    result: SectionResult
    evaluated_at: str | None = None
    failure_reasons: list[str] = field(default_factory=list)
    derived: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        out = {
            "result": self.result.value,
            "evaluatedAt": self.evaluated_at,
            "failureReasons": list(self.failure_reasons),
        }
        if self.derived:
            out["derived"] = dict(self.derived)
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "SectionStatus":
        return cls(
            result=SectionResult(data.get("result", SectionResult.PENDING.value)),
            evaluated_at=data.get("evaluatedAt"),
            failure_reasons=list(data.get("failureReasons") or []),
            derived=dict(data.get("derived") or {}),
        )


@dataclass
class SectionData:
    section_id: str
    fields: dict[str, Any]
    status: SectionStatus | None = None

    def to_dict(self) -> dict:
        out = {"sectionId": self.section_id, "fields": dict(self.fields)}
        if self.status is not None:
            out["status"] = self.status.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "SectionData":
        status = data.get("status")
        return cls(
            section_id=data["sectionId"],
            fields=dict(data.get("fields") or {}),
            status=SectionStatus.from_dict(status) if status else None,
        )


@dataclass
class QuestionnaireSubmission:
    id: str
    questionnaire_id: str
    partner_id: str
    template_version: int
    sections: list[SectionData]
    section_statuses: dict[str, SectionStatus]
    overall_status: OverallStatus
    signature: Signature
    submitted_by: str
    submitted_by_role: str
    created_at: str
    updated_at: str
    submitted_at: str
    ip_address: str | None = None
    user_agent: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "questionnaireId": self.questionnaire_id,
            "partnerId": self.partner_id,
            "templateVersion": self.template_version,
            "sections": [s.to_dict() for s in self.sections],
            "sectionStatuses": {sid: st.to_dict() for sid, st in self.section_statuses.items()},
            "overallStatus": self.overall_status.value,
            "signature": self.signature.to_dict(),
            "submittedBy": self.submitted_by,
            "submittedByRole": self.submitted_by_role,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "submittedAt": self.submitted_at,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QuestionnaireSubmission":
        return cls(
            id=data["id"],
            questionnaire_id=data["questionnaireId"],
            partner_id=data["partnerId"],
            template_version=int(data["templateVersion"]),
            sections=[SectionData.from_dict(s) for s in data.get("sections") or []],
            section_statuses={
                sid: SectionStatus.from_dict(st)
                for sid, st in (data.get("sectionStatuses") or {}).items()
            },
            overall_status=OverallStatus(data.get("overallStatus", OverallStatus.PENDING.value)),
            signature=Signature.from_dict(data.get("signature") or {}),
            submitted_by=data.get("submittedBy", ""),
            submitted_by_role=data.get("submittedByRole", ""),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
            submitted_at=data.get("submittedAt", ""),
            ip_address=data.get("ipAddress"),
            user_agent=data.get("userAgent"),
        )
