"""Partner service layer — partner CRUD on top of PartnerStore.

Validation and authorization always run before any write.  Partner writes
are whole-record and last-writer-wins; ``currentGate`` changes are handed to
the GateProgressionController, and ``gates`` can never be set by a client.

Operations:
- create_partner: new partner at pre-contract with initialised gate progress
- get_partner / list_partners: role-filtered reads (404 before 403)
- update_partner: attribute edits plus guarded gate moves
- delete_partner: PDM only, also removes the partner's submissions
"""
import logging

from email_validator import EmailNotValidError, validate_email

from onboarding_hub.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from onboarding_hub.models.gates import GATE_ORDER, is_valid_gate
from onboarding_hub.models.records import (
    CONTRACT_TYPES,
    TIERS,
    AuthUser,
    PartnerRecord,
)
from onboarding_hub.services import rbac
from onboarding_hub.services.gate_progression import (
    GateProgressionController,
    initialize_gate_progress,
)
from onboarding_hub.services.partner_store import PartnerStore
from onboarding_hub.services.submission_store import SubmissionStore
from onboarding_hub.utils.helpers import new_record_id, parse_date_input, to_iso, utcnow

logger = logging.getLogger(__name__)

_OWNER_ATTRS = {
    "pamOwner": "pam_owner",
    "pdmOwner": "pdm_owner",
    "tpmOwner": "tpm_owner",
    "psmOwner": "psm_owner",
    "tamOwner": "tam_owner",
}
_TIMELINE_ATTRS = {
    "contractSignedDate": "contract_signed_date",
    "targetLaunchDate": "target_launch_date",
    "actualLaunchDate": "actual_launch_date",
    "onboardingStartDate": "onboarding_start_date",
}


# ── Validation ───────────────────────────────────────────────────────────


def _normalise_email(value):
    """Normalised address, or None when *value* is not a valid email."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return validate_email(value.strip(), check_deliverability=False).normalized
    except EmailNotValidError:
        return None


def _non_negative_number(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if value >= 0 else None
    if isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return number if number >= 0 else None
    return None


def validate_partner_payload(data, *, partial=False):
    """Check a create/update body and return ``{attribute: value}``.

    With ``partial`` only the keys present are checked (PUT semantics).
    Raises ValidationError listing every problem in ``details``.
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    errors = {}
    values = {}

    if "gates" in data:
        errors["gates"] = "Gate progress is managed by gate progression and cannot be set directly"

    if not partial or "partnerName" in data:
        name = data.get("partnerName")
        if not isinstance(name, str) or not name.strip():
            errors["partnerName"] = "partnerName is required"
        else:
            values["partner_name"] = name.strip()

    for key, attr in _OWNER_ATTRS.items():
        if key == "pamOwner":
            if partial and key not in data:
                continue
            if not data.get(key):
                errors[key] = "pamOwner is required"
                continue
        elif not data.get(key):
            if key in data:
                values[attr] = None
            continue
        email = _normalise_email(data[key])
        if email is None:
            errors[key] = f"{key} must be a valid email address"
        else:
            values[attr] = email

    if "contractType" in data or not partial:
        contract_type = data.get("contractType", "Other")
        if contract_type not in CONTRACT_TYPES:
            errors["contractType"] = f"contractType must be one of {list(CONTRACT_TYPES)}"
        else:
            values["contract_type"] = contract_type

    if "tier" in data or not partial:
        tier = data.get("tier", "tier-2")
        if tier not in TIERS:
            errors["tier"] = f"tier must be one of {list(TIERS)}"
        else:
            values["tier"] = tier

    for key in ("ccv", "lrp"):
        if key not in data and partial:
            continue
        raw = data.get(key, 0)
        number = _non_negative_number(raw if raw is not None else 0)
        if number is None:
            errors[key] = f"{key} must be a non-negative number"
        else:
            values[key] = number

    for key, attr in _TIMELINE_ATTRS.items():
        if key not in data:
            continue
        try:
            parsed = parse_date_input(data[key])
        except ValueError as exc:
            errors[key] = f"{key}: {exc}"
            continue
        values[attr] = parsed.isoformat() if parsed else None

    if errors:
        first = next(iter(errors.values()))
        raise ValidationError(first, details=errors)
    return values


# ── Reads ────────────────────────────────────────────────────────────────


def get_partner(partner_id, user: AuthUser, store: PartnerStore | None = None) -> PartnerRecord:
    """Load a partner the caller may see. NotFoundError before AuthorizationError."""
    store = store or PartnerStore()
    partner = store.get(partner_id)
    if partner is None:
        raise NotFoundError("Partner", partner_id)
    if not rbac.can_access_partner(user, partner):
        raise AuthorizationError("You do not have access to this partner", action=rbac.VIEW)
    return partner


def list_partners(user: AuthUser, gate=None):
    """Partners visible to *user*, optionally restricted to one current gate."""
    if gate is not None and not is_valid_gate(gate):
        raise ValidationError(f"Unknown gate {gate!r}", details={"gate": f"must be one of {list(GATE_ORDER)}"})
    partners = rbac.filter_partners_by_role(PartnerStore().list_all(), user)
    if gate is not None:
        partners = [p for p in partners if p.current_gate == gate]
    return partners


def group_partners(user: AuthUser):
    return rbac.group_partners_by_gate(PartnerStore().list_all(), user)


# ── Writes ───────────────────────────────────────────────────────────────


def create_partner(data, user: AuthUser) -> PartnerRecord:
    """Create a partner at the first gate.

    Any authenticated user may create a partner; ownership is plain data, so
    a PAM may register a partner for another PAM.
    """
    values = validate_partner_payload(data)
    requested_gate = data.get("currentGate")
    if requested_gate not in (None, GATE_ORDER[0]):
        raise ValidationError(
            f"New partners start at {GATE_ORDER[0]}",
            details={"currentGate": f"must be {GATE_ORDER[0]} or omitted"},
        )

    now = to_iso(utcnow())
    partner = PartnerRecord(id=new_record_id("partner"), created_at=now, updated_at=now, **values)
    initialize_gate_progress(partner, now)
    PartnerStore().save(partner)
    logger.info("Partner created: id=%s name=%s by=%s", partner.id, partner.partner_name, user.email,
                extra={"partner_id": partner.id, "user_email": user.email})
    return partner


def update_partner(partner_id, data, user: AuthUser) -> PartnerRecord:
    """Apply a partial edit; a changed ``currentGate`` goes through the gate guard."""
    store = PartnerStore()
    partner = store.get(partner_id)
    if partner is None:
        raise NotFoundError("Partner", partner_id)
    if not rbac.can_edit_partner(user, partner):
        raise AuthorizationError("You do not have access to this partner", action=rbac.EDIT)

    values = validate_partner_payload(data, partial=True)
    for attr, value in values.items():
        setattr(partner, attr, value)

    requested_gate = data.get("currentGate")
    if requested_gate is not None and requested_gate != partner.current_gate:
        controller = GateProgressionController(store, SubmissionStore())
        controller.apply_requested_gate(partner, requested_gate, user)

    partner.updated_at = to_iso(utcnow())
    store.save(partner)
    logger.info("Partner updated: id=%s by=%s fields=%s", partner.id, user.email, sorted(values),
                extra={"partner_id": partner.id, "user_email": user.email})
    return partner


def delete_partner(partner_id, user: AuthUser) -> int:
    """Hard delete (PDM only). Returns the number of submissions removed with it."""
    store = PartnerStore()
    partner = store.get(partner_id)
    if partner is None:
        raise NotFoundError("Partner", partner_id)
    if not rbac.can_delete_partner(user):
        raise AuthorizationError("Only a PDM can delete partners", action=rbac.DELETE)

    removed = SubmissionStore().delete_for_partner(partner_id)
    store.delete(partner_id)
    logger.info("Partner deleted: id=%s by=%s submissions=%d", partner_id, user.email, removed,
                extra={"partner_id": partner_id, "user_email": user.email})
    return removed
