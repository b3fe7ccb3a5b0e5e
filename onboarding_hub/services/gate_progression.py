"""
Gate Progression Controller — the only writer of ``currentGate`` and ``gates``.

Linear state machine:

    pre-contract → gate-0 → gate-1 → gate-2 → gate-3 → post-launch (terminal)

Transitions:
    automatic   a submission for the partner's current gate with
                overallStatus == "pass" completes the gate and moves to the
                next one (logged as event_type=gate_advanced)
    advance     explicit one-step move, re-checking the verdict of the
                current gate's linked submission
    override    PDM only, any target gate (logged as event_type=gate_override)

Submissions for gates behind the current one are linked but never change
gate state: fixing a typo in an old questionnaire must not regress a partner.

Usage:
    from onboarding_hub.services.gate_progression import GateProgressionController

    gates = GateProgressionController()
    partner = gates.record_submission(partner, submission, actor=user)
    partner = gates.advance("partner-123", user)
"""

from __future__ import annotations

import logging

from onboarding_hub.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from onboarding_hub.models.gates import (
    GATE_ORDER,
    TERMINAL_GATE,
    GateStatus,
    gate_for_questionnaire,
    gate_index,
    gate_label,
    is_valid_gate,
    next_gate,
)
from onboarding_hub.models.records import (
    Approval,
    AuthUser,
    GateProgress,
    OverallStatus,
    PartnerRecord,
    QuestionnaireSubmission,
    SectionResult,
)
from onboarding_hub.services import rbac
from onboarding_hub.services.partner_store import PartnerStore
from onboarding_hub.services.submission_store import SubmissionStore
from onboarding_hub.utils.helpers import to_iso, utcnow

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Pure gate helpers (operate on an in-memory PartnerRecord)
# ═════════════════════════════════════════════════════════════════════════════

def initialize_gate_progress(partner: PartnerRecord, now: str) -> PartnerRecord:
    """Fresh progress map: first gate in progress, the rest not started."""
    partner.gates = {gid: GateProgress(gate_id=gid) for gid in GATE_ORDER}
    first = partner.gates[partner.current_gate]
    first.status = GateStatus.IN_PROGRESS
    first.started_date = now
    return partner


def calculate_gate_status(partner: PartnerRecord, gate_id: str) -> GateStatus:
    """Recorded status, or one inferred from the gate's position."""
    progress = partner.gates.get(gate_id)
    if progress is not None and progress.status != GateStatus.NOT_STARTED:
        return progress.status
    if gate_index(gate_id) == gate_index(partner.current_gate):
        return GateStatus.IN_PROGRESS
    return GateStatus.NOT_STARTED


def gate_blockers(partner: PartnerRecord, gate_id: str) -> list[str]:
    progress = partner.gates.get(gate_id)
    return list(progress.blockers) if progress else []


def gate_completion_percentage(partner: PartnerRecord, gate_id: str) -> int:
    # One questionnaire per gate, so a gate is either done or not
    return 100 if calculate_gate_status(partner, gate_id) == GateStatus.PASSED else 0


def linked_submission_id(partner: PartnerRecord, gate_id: str) -> str | None:
    progress = partner.gates.get(gate_id)
    if progress is None:
        return None
    return progress.questionnaires.get(gate_id)


def can_progress_to(partner: PartnerRecord, target_gate: str, verdict: OverallStatus | str | None) -> tuple[bool, str]:
    """Transition guard for a non-override move to *target_gate*.

    *verdict* is the overall status of the current gate's submission.
    """
    if not is_valid_gate(target_gate):
        return False, f"Unknown gate {target_gate!r}"
    current = partner.current_gate
    current_idx, target_idx = gate_index(current), gate_index(target_gate)
    if target_idx <= current_idx:
        return False, f"Partner is already at {gate_label(current)}; gates never move backwards"
    if target_idx > current_idx + 1:
        return False, (
            f"Cannot skip ahead to {gate_label(target_gate)}: "
            f"{gate_label(next_gate(current))} must be reached first"
        )
    progress = partner.gates.get(current)
    if progress is not None and progress.status == GateStatus.BLOCKED:
        blockers = "; ".join(progress.blockers) or "no reason given"
        return False, f"{gate_label(current)} is blocked: {blockers}"
    if verdict != OverallStatus.PASS:
        shown = OverallStatus(verdict).value if verdict else "missing"
        return False, f"Previous gate {gate_label(current)} must be completed (questionnaire verdict is {shown})"
    return True, ""


def complete_gate(
    partner: PartnerRecord,
    actor: AuthUser,
    now: str,
    notes: str | None = None,
    signature: dict | None = None,
) -> PartnerRecord:
    """Mark the current gate passed and start the next one."""
    current = partner.current_gate
    progress = partner.gate(current)
    progress.status = GateStatus.PASSED
    progress.started_date = progress.started_date or now
    progress.completed_date = now
    progress.blockers = []
    progress.approvals.append(Approval(
        approved_by=actor.email,
        approved_by_role=actor.role.value,
        approved_at=now,
        notes=notes,
        signature=signature,
    ))

    following = next_gate(current)
    if following is not None:
        partner.current_gate = following
        nxt = partner.gate(following)
        if nxt.status in (GateStatus.NOT_STARTED, GateStatus.FAILED):
            nxt.status = GateStatus.IN_PROGRESS
        nxt.started_date = nxt.started_date or now
    partner.updated_at = now
    return partner


def block_gate(partner: PartnerRecord, gate_id: str, blockers: list[str], now: str) -> PartnerRecord:
    progress = partner.gate(gate_id)
    progress.status = GateStatus.BLOCKED
    progress.blockers = list(blockers)
    partner.updated_at = now
    return partner


def gate_summary(partner: PartnerRecord) -> list[dict]:
    """Per-gate view for dashboards."""
    summary = []
    current_idx = gate_index(partner.current_gate)
    for idx, gid in enumerate(GATE_ORDER):
        progress = partner.gates.get(gid) or GateProgress(gate_id=gid)
        summary.append({
            "gateId": gid,
            "label": gate_label(gid),
            "status": calculate_gate_status(partner, gid).value,
            "isCurrent": idx == current_idx,
            "completionPercentage": gate_completion_percentage(partner, gid),
            "startedDate": progress.started_date,
            "completedDate": progress.completed_date,
            "submissionId": progress.questionnaires.get(gid),
            "blockers": gate_blockers(partner, gid),
            "approvals": [a.to_dict() for a in progress.approvals],
        })
    return summary


# ═════════════════════════════════════════════════════════════════════════════
# Controller
# ═════════════════════════════════════════════════════════════════════════════

class GateProgressionController:
    def __init__(self, partners: PartnerStore | None = None, submissions: SubmissionStore | None = None):
        self._partners = partners or PartnerStore()
        self._submissions = submissions or SubmissionStore()

    # ── Helpers ──────────────────────────────────────────────────────────

    def _load_editable(self, partner_id: str, user: AuthUser) -> PartnerRecord:
        partner = self._partners.get(partner_id)
        if partner is None:
            raise NotFoundError("Partner", partner_id)
        if not rbac.can_edit_partner(user, partner):
            raise AuthorizationError("You do not have access to this partner", action=rbac.EDIT)
        return partner

    def current_verdict(self, partner: PartnerRecord) -> OverallStatus | None:
        """Live verdict of the submission linked to the partner's current gate."""
        submission_id = linked_submission_id(partner, partner.current_gate)
        if submission_id is None:
            return None
        submission = self._submissions.get(submission_id)
        return submission.overall_status if submission is not None else None

    @staticmethod
    def _log_advance(partner: PartnerRecord, from_gate: str, actor: AuthUser, trigger: str) -> None:
        logger.info(
            "Gate advanced: partner=%s %s→%s by=%s trigger=%s",
            partner.id, from_gate, partner.current_gate, actor.email, trigger,
            extra={"event_type": "gate_advanced", "partner_id": partner.id, "user_email": actor.email},
        )

    # ── Automatic progression ────────────────────────────────────────────

    def record_submission(
        self,
        partner: PartnerRecord,
        submission: QuestionnaireSubmission,
        actor: AuthUser,
    ) -> PartnerRecord:
        """Link *submission* into the partner's gates and react to its verdict."""
        gate_id = gate_for_questionnaire(submission.questionnaire_id)
        if gate_id is None:
            return partner

        now = to_iso(utcnow())
        progress = partner.gate(gate_id)
        progress.questionnaires[submission.questionnaire_id] = submission.id
        partner.updated_at = now

        if gate_id != partner.current_gate:
            # Past gates: audit/correction only. Future gates: picked up by advance().
            self._partners.save(partner)
            return partner

        verdict = submission.overall_status
        if progress.status == GateStatus.BLOCKED:
            logger.info("Gate %s of partner %s is blocked; verdict %s recorded without progression",
                        gate_id, partner.id, verdict.value, extra={"partner_id": partner.id})
        elif verdict == OverallStatus.PASS:
            complete_gate(
                partner, actor, now,
                notes=f"Questionnaire {submission.id} passed",
                signature={"type": submission.signature.type, "data": submission.signature.data},
            )
            self._log_advance(partner, gate_id, actor, trigger="submission")
        elif verdict == OverallStatus.FAIL:
            progress.status = GateStatus.FAILED
            progress.started_date = progress.started_date or now
            progress.blockers = [
                reason
                for section in submission.sections
                if section.status is not None and section.status.result == SectionResult.FAIL
                for reason in section.status.failure_reasons
            ]
        else:
            progress.status = GateStatus.IN_PROGRESS
            progress.started_date = progress.started_date or now
            progress.blockers = []

        self._partners.save(partner)
        return partner

    # ── Explicit transitions ─────────────────────────────────────────────

    def advance(self, partner_id: str, user: AuthUser) -> PartnerRecord:
        partner = self._load_editable(partner_id, user)
        if partner.current_gate == TERMINAL_GATE:
            raise ValidationError(f"{gate_label(TERMINAL_GATE)} is the final gate")
        self.move_forward(partner, next_gate(partner.current_gate), user)
        self._partners.save(partner)
        return partner

    def move_forward(self, partner: PartnerRecord, target_gate: str, user: AuthUser) -> PartnerRecord:
        """Guarded one-step move on an in-memory partner (not saved)."""
        ok, reason = can_progress_to(partner, target_gate, self.current_verdict(partner))
        if not ok:
            raise ValidationError(reason, details={"currentGate": partner.current_gate, "targetGate": target_gate})
        from_gate = partner.current_gate
        complete_gate(partner, user, to_iso(utcnow()), notes="Advanced on request")
        self._log_advance(partner, from_gate, user, trigger="request")
        return partner

    def apply_override(self, partner: PartnerRecord, target_gate: str, user: AuthUser, reason: str | None = None) -> PartnerRecord:
        """Admin move to any gate on an in-memory partner (not saved)."""
        if not rbac.can_override_gate(user):
            raise AuthorizationError("Only a PDM can override gate progression", action="override")
        if not is_valid_gate(target_gate):
            raise ValidationError(f"Unknown gate {target_gate!r}", details={"targetGate": target_gate})

        now = to_iso(utcnow())
        from_gate = partner.current_gate
        partner.current_gate = target_gate
        target = partner.gate(target_gate)
        if target.status in (GateStatus.NOT_STARTED, GateStatus.PASSED):
            target.status = GateStatus.IN_PROGRESS
        target.started_date = target.started_date or now
        target.approvals.append(Approval(
            approved_by=user.email,
            approved_by_role=user.role.value,
            approved_at=now,
            notes=f"Override {from_gate} → {target_gate}" + (f": {reason}" if reason else ""),
        ))
        partner.updated_at = now
        logger.warning(
            "Gate override: partner=%s %s→%s by=%s reason=%s",
            partner.id, from_gate, target_gate, user.email, reason or "-",
            extra={"event_type": "gate_override", "partner_id": partner.id, "user_email": user.email},
        )
        return partner

    def override_gate(self, partner_id: str, target_gate: str, user: AuthUser, reason: str | None = None) -> PartnerRecord:
        if not rbac.can_override_gate(user):
            raise AuthorizationError("Only a PDM can override gate progression", action="override")
        partner = self._partners.get(partner_id)
        if partner is None:
            raise NotFoundError("Partner", partner_id)
        self.apply_override(partner, target_gate, user, reason)
        self._partners.save(partner)
        return partner

    def apply_requested_gate(self, partner: PartnerRecord, target_gate: str, user: AuthUser) -> PartnerRecord:
        """Handle a ``currentGate`` change requested through a partner edit.

        Only a guarded one-step advance is accepted, for every role. Skips and
        backward moves go through ``POST /partner/<id>/gates/override``.
        """
        if not is_valid_gate(target_gate):
            raise ValidationError(f"Unknown gate {target_gate!r}", details={"currentGate": target_gate})
        if target_gate == partner.current_gate:
            return partner
        ok, reason = can_progress_to(partner, target_gate, self.current_verdict(partner))
        if not ok:
            if rbac.can_override_gate(user):
                reason += f". Use POST /api/v1/partner/{partner.id}/gates/override to move the partner explicitly"
            raise ValidationError(reason, details={"currentGate": partner.current_gate, "targetGate": target_gate})
        return self.move_forward(partner, target_gate, user)

    def block_gate(self, partner_id: str, gate_id: str, blockers: list[str], user: AuthUser) -> PartnerRecord:
        if not is_valid_gate(gate_id):
            raise ValidationError(f"Unknown gate {gate_id!r}", details={"gateId": gate_id})
        if not isinstance(blockers, list) or not [b for b in blockers if isinstance(b, str) and b.strip()]:
            raise ValidationError("blockers must be a non-empty list of reasons", details={"blockers": "required"})
        partner = self._load_editable(partner_id, user)
        block_gate(partner, gate_id, [b.strip() for b in blockers if isinstance(b, str) and b.strip()], to_iso(utcnow()))
        logger.info("Gate blocked: partner=%s gate=%s by=%s", partner.id, gate_id, user.email,
                    extra={"event_type": "gate_blocked", "partner_id": partner.id})
        self._partners.save(partner)
        return partner

    def summary(self, partner: PartnerRecord) -> list[dict]:
        return gate_summary(partner)
