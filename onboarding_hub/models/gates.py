"""
Fixed onboarding pipeline.

    pre-contract → gate-0 → gate-1 → gate-2 → gate-3 → post-launch

Every gate except post-launch has exactly one questionnaire, whose template
id is the gate id itself.
"""

from __future__ import annotations

from enum import Enum

GATE_ORDER: tuple[str, ...] = (
    "pre-contract",
    "gate-0",
    "gate-1",
    "gate-2",
    "gate-3",
    "post-launch",
)

GATE_LABELS: dict[str, str] = {
    "pre-contract": "Pre-Contract: PDM Engagement",
    "gate-0": "Gate 0: Onboarding Kickoff",
    "gate-1": "Gate 1: Ready to Sell",
    "gate-2": "Gate 2: Ready to Order",
    "gate-3": "Gate 3: Ready to Deliver",
    "post-launch": "Post-Launch",
}

TERMINAL_GATE = "post-launch"
GATES_WITH_QUESTIONNAIRE: tuple[str, ...] = GATE_ORDER[:-1]


class GateStatus(str, Enum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    PASSED = "passed"
    FAILED = "failed"
    BLOCKED = "blocked"


def is_valid_gate(gate_id) -> bool:
    return gate_id in GATE_ORDER


def gate_index(gate_id: str) -> int:
    """Position of *gate_id* in the pipeline. Raises ValueError for unknown gates."""
    return GATE_ORDER.index(gate_id)


def next_gate(gate_id: str) -> str | None:
    idx = gate_index(gate_id)
    return GATE_ORDER[idx + 1] if idx + 1 < len(GATE_ORDER) else None


def gate_for_questionnaire(questionnaire_id: str) -> str | None:
    """Gate governed by a questionnaire, or None if it is not a gate questionnaire."""
    return questionnaire_id if questionnaire_id in GATES_WITH_QUESTIONNAIRE else None


def gate_label(gate_id: str) -> str:
    return GATE_LABELS.get(gate_id, gate_id)
