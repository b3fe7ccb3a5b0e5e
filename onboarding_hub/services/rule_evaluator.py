"""
Rule Evaluator — turns a section's raw answers into a pass/fail/pending verdict.

Pure functions: no I/O and no mutation of inputs.  The same (fields, criteria)
always produce the same SectionStatus, which is what lets a historical
submission be re-evaluated against the template version it was pinned to.

Criteria:
    {"type": "manual"}                     → always pending (human review)
    {"type": "automatic", "rules": [...]}  → every rule must pass (AND)

Rules are all evaluated (no short-circuit) and each failing rule adds one
failure reason, so the submitter sees every unmet condition at once.

Operators:
    equals / notEquals        strict equality
    greaterThan / lessThan    both sides coerced to numbers
    contains / notContains    list membership for list answers, substring otherwise
    in                        answer must be one of the rule's list value

Missing answers fail every rule that references them.  Unknown operators
fail closed and are logged at ERROR for investigation.

The strategic classification section additionally checks the partner tier
against its contract committed value (CCV).

Usage:
    from onboarding_hub.services.rule_evaluator import evaluate_section

    status = evaluate_section("kickoff", {"kickoff-held": "Yes"}, criteria, section_title="Kickoff")
    status.result            # SectionResult.PASS
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Iterable

from onboarding_hub.models.records import (
    OverallStatus,
    PassFailCriteria,
    QuestionnaireTemplate,
    Rule,
    SectionData,
    SectionResult,
    SectionStatus,
)
from onboarding_hub.utils.helpers import to_iso, utcnow

logger = logging.getLogger(__name__)

# ── Strategic classification ─────────────────────────────────────────────

STRATEGIC_SECTION_ID = "strategic-classification"
TIER_FIELD = "partner-tier"
CCV_FIELD = "ccv-amount"
LRP_FIELD = "country-lrp"
CCV_PERCENTAGE_FIELD = "ccv-percentage-of-lrp"

TIER_0_MIN_CCV = 50_000_000
TIER_1_MIN_CCV_PERCENTAGE = 10

TIER_0_MESSAGE = "Tier 0 requires CCV ≥ $50M"
TIER_1_MESSAGE = "Tier 1 requires CCV ≥ 10% of Country LRP"
TIER_2_MESSAGE = "Tier 2 partners are below strategic threshold and may not qualify for PDM support"


# ═════════════════════════════════════════════════════════════════════════════
# Value helpers
# ═════════════════════════════════════════════════════════════════════════════

def is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def to_number(value: Any) -> float | None:
    """Numeric view of an answer, or None when it is not a number."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(number) else number


def _normalise_tier(value: Any) -> str | None:
    # "Tier 0", "tier-0" and "TIER 0" all mean the same tier
    if not isinstance(value, str):
        return None
    text = value.strip().lower().replace("-", " ")
    return {"tier 0": "Tier 0", "tier 1": "Tier 1", "tier 2": "Tier 2"}.get(text)


# ═════════════════════════════════════════════════════════════════════════════
# Rules
# ═════════════════════════════════════════════════════════════════════════════

class UnknownOperator(Exception):
    pass


def apply_operator(operator: str, actual: Any, expected: Any) -> bool:
    """Compare a present answer with a rule value. Raises UnknownOperator."""
    if operator == "equals":
        return actual == expected
    if operator == "notEquals":
        return actual != expected
    if operator in ("greaterThan", "lessThan"):
        left, right = to_number(actual), to_number(expected)
        if left is None or right is None:
            return False
        return left > right if operator == "greaterThan" else left < right
    if operator in ("contains", "notContains"):
        if isinstance(actual, (list, tuple)):
            found = expected in actual
        else:
            found = str(expected) in str(actual)
        return found if operator == "contains" else not found
    if operator == "in":
        if not isinstance(expected, (list, tuple)):
            return False
        if isinstance(actual, (list, tuple)):
            # Multi-select answers pass when every selected option is allowed
            return all(item in expected for item in actual)
        return actual in expected
    raise UnknownOperator(operator)


def evaluate_rule(rule: Rule, fields: dict, section_id: str = "") -> bool:
    actual = fields.get(rule.field_id)
    if is_missing(actual):
        return False
    try:
        return apply_operator(rule.operator, actual, rule.value)
    except UnknownOperator:
        logger.error(
            "Unknown rule operator %r in section=%s field=%s; treating rule as failed",
            rule.operator, section_id, rule.field_id,
            extra={"event_type": "unknown_operator"},
        )
        return False


# ═════════════════════════════════════════════════════════════════════════════
# Strategic classification override
# ═════════════════════════════════════════════════════════════════════════════

def strategic_override(fields: dict) -> tuple[bool, list[str], dict]:
    """Tier checks for the strategic section.

    Returns ``(failed, reasons, derived)``. Tier 2 only adds an informational
    reason and never fails the section on its own.
    """
    ccv = to_number(fields.get(CCV_FIELD)) or 0
    lrp = to_number(fields.get(LRP_FIELD)) or 0
    percentage = (ccv / lrp) * 100 if lrp > 0 else 0
    derived = {CCV_PERCENTAGE_FIELD: f"{percentage:.2f}"}

    tier = _normalise_tier(fields.get(TIER_FIELD))
    if tier == "Tier 0" and ccv < TIER_0_MIN_CCV:
        return True, [TIER_0_MESSAGE], derived
    if tier == "Tier 1" and percentage < TIER_1_MIN_CCV_PERCENTAGE:
        return True, [TIER_1_MESSAGE], derived
    if tier == "Tier 2":
        return False, [TIER_2_MESSAGE], derived
    return False, [], derived


# ═════════════════════════════════════════════════════════════════════════════
# Sections & submissions
# ═════════════════════════════════════════════════════════════════════════════

def evaluate_section(
    section_id: str,
    fields: dict,
    criteria: PassFailCriteria | dict | None,
    section_title: str = "",
    now: datetime | None = None,
) -> SectionStatus:
    """Verdict for one section.

    Raises MalformedCriteriaError when *criteria* is a mapping that does not
    have the canonical rule shape.
    """
    if criteria is None:
        return SectionStatus(result=SectionResult.PENDING)
    criteria = PassFailCriteria.from_dict(criteria)
    if criteria.is_manual:
        return SectionStatus(result=SectionResult.PENDING)

    title = section_title or section_id
    failed = False
    reasons: list[str] = []
    for rule in criteria.rules:
        if not evaluate_rule(rule, fields, section_id):
            failed = True
            reasons.append(rule.failure_message or f"{title}: Required criteria not met")

    derived: dict = {}
    if section_id == STRATEGIC_SECTION_ID:
        tier_failed, tier_reasons, derived = strategic_override(fields)
        failed = failed or tier_failed
        reasons.extend(tier_reasons)

    return SectionStatus(
        result=SectionResult.FAIL if failed else SectionResult.PASS,
        evaluated_at=to_iso(now or utcnow()),
        failure_reasons=reasons,
        derived=derived,
    )


def derive_overall_status(results: Iterable[SectionResult | str]) -> OverallStatus:
    """pass iff all pass; fail iff any fail; partial for a pass/pending mix; else pending."""
    results = [SectionResult(r) for r in results]
    if not results:
        return OverallStatus.PENDING
    if any(r == SectionResult.FAIL for r in results):
        return OverallStatus.FAIL
    if all(r == SectionResult.PASS for r in results):
        return OverallStatus.PASS
    if any(r == SectionResult.PASS for r in results):
        return OverallStatus.PARTIAL
    return OverallStatus.PENDING


def evaluate_submission(
    sections: list[SectionData],
    template: QuestionnaireTemplate,
    now: datetime | None = None,
) -> tuple[list[SectionData], dict[str, SectionStatus], OverallStatus]:
    """Evaluate submitted sections against a template (current or pinned).

    Every template section is evaluated in template order; a section the
    submitter left out is evaluated with no answers.  Templates without
    sections evaluate the submitted sections as they are (always pending).
    Derived values such as the CCV percentage are merged into the returned
    section answers; the input objects are left untouched.
    """
    now = now or utcnow()
    submitted = {s.section_id: s.fields for s in sections}

    if template.sections:
        targets = [(s.id, s.title, s.pass_fail_criteria) for s in template.sections]
    else:
        targets = [(s.section_id, s.section_id, None) for s in sections]

    evaluated: list[SectionData] = []
    statuses: dict[str, SectionStatus] = {}
    for section_id, title, criteria in targets:
        answers = dict(submitted.get(section_id, {}))
        status = evaluate_section(section_id, answers, criteria, section_title=title, now=now)
        answers.update(status.derived)
        evaluated.append(SectionData(section_id=section_id, fields=answers, status=status))
        statuses[section_id] = status

    overall = derive_overall_status(st.result for st in statuses.values())
    return evaluated, statuses, overall
