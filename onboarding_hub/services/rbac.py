"""
RBAC Policy Engine — who may view, edit, submit or delete which partner.

Pure decision functions with no I/O.  Two roles:

    PAM  Partner Account Manager: only partners where pamOwner == own email
    PDM  Partner Development Manager: administrator, every capability

Owner matching is case-insensitive on email.  Every function returns a plain
bool for any input (including a missing user or partner) so the whole
role × action table can be checked exhaustively.

Known smell: PDM doubles as the administrator role, coupling an operational
role with blanket admin rights. Revisit if more roles are introduced.

Usage:
    from onboarding_hub.services import rbac

    if not rbac.is_allowed(user, rbac.EDIT, partner):
        raise AuthorizationError("You do not own this partner", action=rbac.EDIT)
"""

from __future__ import annotations

from onboarding_hub.models.gates import GATE_ORDER, is_valid_gate
from onboarding_hub.models.records import AuthUser, PartnerRecord, Role

# ── Actions ──────────────────────────────────────────────────────────────────

VIEW = "view"
EDIT = "edit"
SUBMIT = "submit"
DELETE = "delete"
ACTIONS = (VIEW, EDIT, SUBMIT, DELETE)

# ── Route table ──────────────────────────────────────────────────────────────
# Path prefix → roles allowed. PDM bypasses the table; paths not listed are
# open to any authenticated user. Longest matching prefix wins.

ROUTE_ACCESS: dict[str, frozenset[Role]] = {
    "/partner": frozenset({Role.PAM, Role.PDM}),
    "/questionnaires/pre-contract": frozenset({Role.PAM, Role.PDM}),
    "/questionnaires/gate-0": frozenset({Role.PAM, Role.PDM}),
    "/questionnaires/gate-1": frozenset({Role.PAM, Role.PDM}),
    "/questionnaires/gate-2": frozenset({Role.PAM, Role.PDM}),
    "/questionnaires/gate-3": frozenset({Role.PAM, Role.PDM}),
    "/reports": frozenset({Role.PAM, Role.PDM}),
    "/admin": frozenset({Role.PDM}),
    "/api/v1/admin": frozenset({Role.PDM}),
}


def _email(value: str | None) -> str:
    return (value or "").strip().lower()


def _is_admin(user: AuthUser | None) -> bool:
    # PDM doubles as the administrator role
    return user is not None and user.is_admin


# ═════════════════════════════════════════════════════════════════════════════
# Partner-level decisions
# ═════════════════════════════════════════════════════════════════════════════

def is_primary_owner(user: AuthUser | None, partner: PartnerRecord | None) -> bool:
    if user is None or partner is None:
        return False
    owner = _email(partner.pam_owner)
    return bool(owner) and owner == _email(user.email)


def can_access_partner(user: AuthUser | None, partner: PartnerRecord | None) -> bool:
    if user is None or partner is None:
        return False
    return _is_admin(user) or is_primary_owner(user, partner)


def can_edit_partner(user: AuthUser | None, partner: PartnerRecord | None) -> bool:
    return partner is not None and can_access_partner(user, partner)


def can_edit_questionnaire(user: AuthUser | None, partner: PartnerRecord | None) -> bool:
    return can_access_partner(user, partner)


def can_submit_questionnaire(user: AuthUser | None, partner: PartnerRecord | None, gate_id: str | None = None) -> bool:
    if gate_id is not None and not is_valid_gate(gate_id):
        return False
    return can_access_partner(user, partner)


def can_delete_partner(user: AuthUser | None) -> bool:
    return _is_admin(user)


def can_manage_templates(user: AuthUser | None) -> bool:
    return _is_admin(user)


def can_override_gate(user: AuthUser | None) -> bool:
    return _is_admin(user)


def is_allowed(user: AuthUser | None, action: str, partner: PartnerRecord | None = None) -> bool:
    """Single entry point for the role × action table.

    ================  =====  =====  ======  ======
    role              view   edit   submit  delete
    ================  =====  =====  ======  ======
    PDM               yes    yes    yes     yes
    PAM (owner)       yes    yes    yes     no
    PAM (not owner)   no     no     no      no
    ================  =====  =====  ======  ======

    Unknown actions are denied.
    """
    if action == DELETE:
        return can_delete_partner(user)
    if action == VIEW:
        return can_access_partner(user, partner)
    if action == EDIT:
        return can_edit_partner(user, partner)
    if action == SUBMIT:
        return can_submit_questionnaire(user, partner)
    return False


# ═════════════════════════════════════════════════════════════════════════════
# Collections & gates
# ═════════════════════════════════════════════════════════════════════════════

def filter_partners_by_role(partners: list[PartnerRecord], user: AuthUser | None) -> list[PartnerRecord]:
    if user is None:
        return []
    if _is_admin(user):
        return list(partners)
    return [p for p in partners if is_primary_owner(user, p)]


def group_partners_by_gate(partners: list[PartnerRecord], user: AuthUser | None) -> dict[str, list[PartnerRecord]]:
    """Visible partners bucketed by current gate, every gate present."""
    groups: dict[str, list[PartnerRecord]] = {gid: [] for gid in GATE_ORDER}
    for partner in filter_partners_by_role(partners, user):
        groups.setdefault(partner.current_gate, []).append(partner)
    return groups


def relevant_gates_for_role(role: Role | str) -> list[str]:
    # Both roles follow partners through the whole pipeline
    return list(GATE_ORDER)


def can_view_gate(role: Role | str, gate_id: str) -> bool:
    return is_valid_gate(gate_id) and gate_id in relevant_gates_for_role(role)


def dashboard_message(user: AuthUser | None) -> str:
    if user is None:
        return "Please log in to view partners."
    if _is_admin(user):
        return "Viewing all partners across every gate."
    return "Viewing partners where you are the PAM owner."


# ═════════════════════════════════════════════════════════════════════════════
# Routes
# ═════════════════════════════════════════════════════════════════════════════

def can_access_route(user: AuthUser | None, path: str) -> bool:
    """Table-driven route check; authenticated callers pass unlisted routes."""
    if user is None:
        return False
    if _is_admin(user):
        return True
    matches = [prefix for prefix in ROUTE_ACCESS if path == prefix or path.startswith(prefix.rstrip("/") + "/")]
    if not matches:
        return True
    allowed = ROUTE_ACCESS[max(matches, key=len)]
    return user.role in allowed
