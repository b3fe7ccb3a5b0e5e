"""Default questionnaire templates, one per gate that has a questionnaire.

Seeding only ever creates version 1 of a missing template; an existing
template (and its version history) is never touched.

Usage:
    flask seed-templates
"""
import logging

from onboarding_hub.core.exceptions import ConflictError
from onboarding_hub.models.gates import GATE_LABELS
from onboarding_hub.models.records import QuestionnaireTemplate
from onboarding_hub.services.rule_evaluator import CCV_FIELD, LRP_FIELD, STRATEGIC_SECTION_ID, TIER_FIELD
from onboarding_hub.services.template_store import TemplateStore

logger = logging.getLogger(__name__)

YES_NO = ["Yes", "No"]


def _yes_no_section(section_id, title, description, questions):
    """Section of required Yes/No questions that must all be answered "Yes".

    *questions* is a list of ``(field_id, label, failure_message)``.
    """
    fields = [
        {"id": fid, "type": "radio", "label": label, "required": True,
         "options": YES_NO, "sectionId": section_id}
        for fid, label, _ in questions
    ]
    rules = [
        {"fieldId": fid, "operator": "equals", "value": "Yes", "failureMessage": message}
        for fid, _, message in questions
    ]
    section = {
        "id": section_id,
        "title": title,
        "description": description,
        "passFailCriteria": {"type": "automatic", "rules": rules},
    }
    return fields, section


def _assemble(template_id, parts):
    fields, sections = [], []
    for section_fields, section in parts:
        fields.extend(section_fields)
        sections.append(section)
    for order, f in enumerate(fields):
        f["order"] = order
    return {"id": template_id, "name": GATE_LABELS[template_id], "version": 0,
            "fields": fields, "sections": sections}


def _pre_contract():
    strategic_fields = [
        {"id": TIER_FIELD, "type": "select", "label": "Partner Tier", "required": True,
         "options": ["Tier 0", "Tier 1", "Tier 2"], "sectionId": STRATEGIC_SECTION_ID},
        {"id": CCV_FIELD, "type": "number", "label": "CCV Amount (USD)", "required": True,
         "sectionId": STRATEGIC_SECTION_ID},
        {"id": LRP_FIELD, "type": "number", "label": "Country LRP (USD)", "required": True,
         "sectionId": STRATEGIC_SECTION_ID},
    ]
    strategic_section = {
        "id": STRATEGIC_SECTION_ID,
        "title": "Strategic Classification",
        "description": "Tier assignment checked against CCV and country LRP",
        "passFailCriteria": {
            "type": "automatic",
            "rules": [{"fieldId": TIER_FIELD, "operator": "in", "value": ["Tier 0", "Tier 1", "Tier 2"],
                       "failureMessage": "A partner tier must be selected"}],
        },
    }
    return _assemble("pre-contract", [
        _yes_no_section("partner-profile", "Partner Profile", "Basic partner qualification", [
            ("partner-legal-entity-verified", "Has the partner legal entity been verified?",
             "Partner legal entity must be verified"),
            ("partner-market-presence", "Does the partner have an established market presence?",
             "Partner must have an established market presence"),
        ]),
        (strategic_fields, strategic_section),
        _yes_no_section("pdm-engagement", "PDM Engagement", "PDM support commitment", [
            ("pdm-assigned", "Has a PDM been assigned to this partner?", "A PDM must be assigned"),
            ("executive-sponsor-identified", "Has an executive sponsor been identified?",
             "An executive sponsor must be identified"),
        ]),
    ])


def _gate_0():
    return _assemble("gate-0", [
        _yes_no_section("contract-execution", "Contract Execution", "Contract status", [
            ("contract-signed", "Contract signed?", "Contract must be signed"),
        ]),
        _yes_no_section("partner-team", "Partner Team", "Team identified", [
            ("team-commitment-confirmed", "Team committed?", "Partner team commitment must be confirmed"),
        ]),
        _yes_no_section("launch-timing", "Launch Timing", "Launch window", [
            ("launch-within-12-months", "Launch within 12 months?", "Launch must be planned within 12 months"),
        ]),
        _yes_no_section("financial-bar", "Financial Bar", "Commercial commitment", [
            ("meets-financial-bar", "Meets financial bar?", "Partner must meet the financial bar"),
        ]),
    ])


def _gate_1():
    return _assemble("gate-1", [
        _yes_no_section("phase-1a-kickoff", "Phase 1A: Onboarding Kickoff & Planning",
                        "Initial onboarding activities", [
            ("kickoff-session-completed", "Has the onboarding kickoff session been completed?",
             "Kickoff session must be completed"),
            ("project-plan-approved", "Has the project plan been approved?", "Project plan must be approved"),
        ]),
        _yes_no_section("phase-1b-gtm-discovery", "Phase 1B: GTM Strategy & Technical Discovery",
                        "Go-to-market strategy development", [
            ("gtm-strategy-approved", "Has the GTM strategy been approved?", "GTM strategy must be approved"),
            ("technical-architecture-defined", "Has the technical architecture been defined?",
             "Technical architecture must be defined"),
        ]),
        _yes_no_section("phase-1c-training", "Phase 1C: Training & Enablement", "Sales team training", [
            ("sales-team-certified", "Has the sales team been certified?", "Sales team must be certified"),
            ("portal-access-confirmed", "Has portal access been confirmed?", "Portal access must be confirmed"),
        ]),
    ])


def _gate_2():
    return _assemble("gate-2", [
        _yes_no_section("phase-2a-systems-integration", "Phase 2A: Systems Integration",
                        "Ordering systems connected", [
            ("api-integration-complete", "Has API integration been completed?", "API integration must be complete"),
            ("monitoring-active", "Is system monitoring active?", "System monitoring must be active"),
        ]),
        _yes_no_section("phase-2b-operational-process", "Phase 2B: Operational Process Setup",
                        "Order handling and support", [
            ("order-management-configured", "Has order management been configured?",
             "Order management must be configured"),
            ("support-processes-established", "Have support processes been established?",
             "Support processes must be established"),
        ]),
    ])


def _gate_3():
    return _assemble("gate-3", [
        _yes_no_section("phase-3a-operational-readiness", "Phase 3A: Operational Readiness",
                        "Delivery operations proven", [
            ("beta-testing-complete", "Has beta testing been completed successfully?",
             "Beta testing must be completed"),
            ("support-transition-complete", "Has support transition been completed?",
             "Support transition must be completed"),
        ]),
        _yes_no_section("phase-3b-launch-validation", "Phase 3B: Launch Validation", "Go-live sign-off", [
            ("launch-readiness-review-complete", "Has the launch readiness review been completed?",
             "Launch readiness review must be completed"),
            ("go-live-approval-obtained", "Has final go-live approval been obtained?",
             "Final go-live approval must be obtained"),
        ]),
    ])


def default_templates() -> list[QuestionnaireTemplate]:
    """All default templates, in gate order."""
    return [QuestionnaireTemplate.from_dict(data)
            for data in (_pre_contract(), _gate_0(), _gate_1(), _gate_2(), _gate_3())]


def seed_default_templates(created_by="system", store: TemplateStore | None = None) -> int:
    """
    Create version 1 of every missing default template.
    Safe to run multiple times — existing template ids are skipped.

    Returns the number of templates created.
    """
    store = store or TemplateStore()
    created = 0
    for template in default_templates():
        if store.get_current(template.id) is not None:
            continue
        try:
            store.create(template, created_by=created_by)
        except ConflictError:
            logger.info("Template %s was created concurrently; skipping", template.id)
            continue
        created += 1

    if created > 0:
        logger.info("Seeded %d questionnaire templates", created)
    return created
