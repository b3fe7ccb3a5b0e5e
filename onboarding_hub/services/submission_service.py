"""Submission service layer — questionnaire submissions and their verdicts.

Every write follows the same order: validate the body, load the partner
(404), authorize (403), load the template the submission is interpreted
against (404), evaluate, persist, then hand the verdict to the
GateProgressionController.  Client-sent statuses are ignored; the server
always evaluates.

Version pinning:
- create stamps ``templateVersion`` with the current template version
- update re-evaluates against the pinned version and never repins
- migrate (PDM only) is the one sanctioned way to move a submission to the
  current template version
"""
import logging

from email_validator import EmailNotValidError, validate_email

from onboarding_hub.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from onboarding_hub.models.gates import gate_for_questionnaire
from onboarding_hub.models.records import (
    SIGNATURE_TYPES,
    AuthUser,
    QuestionnaireSubmission,
    QuestionnaireTemplate,
    Role,
    SectionData,
    Signature,
)
from onboarding_hub.services import rbac
from onboarding_hub.services.gate_progression import GateProgressionController
from onboarding_hub.services.partner_store import PartnerStore
from onboarding_hub.services.rule_evaluator import evaluate_submission, is_missing
from onboarding_hub.services.submission_store import SubmissionStore
from onboarding_hub.services.template_store import TemplateStore
from onboarding_hub.utils.helpers import new_record_id, to_iso, utcnow

logger = logging.getLogger(__name__)


# ── Payload parsing ──────────────────────────────────────────────────────


def _require_str(data, key, errors):
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        errors[key] = f"{key} is required"
        return None
    return value.strip()


def _parse_signature(raw, errors, now, client_ip, user_agent):
    if not isinstance(raw, dict):
        errors["signature"] = "signature is required"
        return None

    sig_type = raw.get("type")
    if sig_type not in SIGNATURE_TYPES:
        errors["signature.type"] = f"signature type must be one of {list(SIGNATURE_TYPES)}"
    for key in ("data", "signerName"):
        value = raw.get(key)
        if not isinstance(value, str) or not value.strip():
            errors[f"signature.{key}"] = f"signature {key} is required"

    signer_email = None
    try:
        signer_email = validate_email(str(raw.get("signerEmail") or ""), check_deliverability=False).normalized
    except EmailNotValidError:
        errors["signature.signerEmail"] = "signature signerEmail must be a valid email address"

    if any(key.startswith("signature") for key in errors):
        return None
    return Signature(
        type=sig_type,
        data=raw["data"],
        signer_name=raw["signerName"].strip(),
        signer_email=signer_email,
        timestamp=now,
        ip_address=client_ip,
        user_agent=user_agent,
    )


def _parse_sections(raw, errors):
    """Submitted ``[{sectionId, fields}]`` as SectionData; statuses are dropped."""
    if not isinstance(raw, list):
        errors["sections"] = "sections must be a list of {sectionId, fields}"
        return []
    sections = []
    seen = set()
    for idx, item in enumerate(raw):
        if not isinstance(item, dict):
            errors[f"sections[{idx}]"] = "Each section must be an object"
            continue
        section_id = item.get("sectionId")
        fields = item.get("fields", {})
        if not isinstance(section_id, str) or not section_id:
            errors[f"sections[{idx}].sectionId"] = "sectionId is required"
            continue
        if not isinstance(fields, dict):
            errors[f"sections[{idx}].fields"] = "fields must be an object"
            continue
        if section_id in seen:
            errors[f"sections[{idx}].sectionId"] = f"Duplicate section {section_id!r}"
            continue
        seen.add(section_id)
        sections.append(SectionData(section_id=section_id, fields=dict(fields)))
    return sections


def _check_against_template(sections, template: QuestionnaireTemplate):
    """Sections must exist in the template and required active fields be answered."""
    errors = {}
    declared = {s.id for s in template.sections}
    if declared:
        for section in sections:
            if section.section_id not in declared:
                errors[section.section_id] = f"Section {section.section_id!r} is not part of template {template.id}"

    answers = {s.section_id: s.fields for s in sections}
    for f in template.active_fields:
        if f.required and is_missing(answers.get(f.section_id, {}).get(f.id)):
            errors[f.id] = f'"{f.label}" is required'

    if errors:
        raise ValidationError(next(iter(errors.values())), details=errors)


def _raise_errors(errors):
    if errors:
        raise ValidationError(next(iter(errors.values())), details=errors)


# ── Loading & authorization ──────────────────────────────────────────────


def _load_submission(submission_id, submissions: SubmissionStore) -> QuestionnaireSubmission:
    submission = submissions.get(submission_id)
    if submission is None:
        raise NotFoundError("Submission", submission_id)
    return submission


def _load_partner(partner_id, partners: PartnerStore):
    partner = partners.get(partner_id)
    if partner is None:
        raise NotFoundError("Partner", partner_id)
    return partner


def _pinned_template(templates: TemplateStore, submission: QuestionnaireSubmission) -> QuestionnaireTemplate:
    template = templates.get_for_submission(submission.questionnaire_id, submission.template_version)
    if template is None:
        raise NotFoundError("Template version", f"{submission.questionnaire_id} v{submission.template_version}")
    return template


def get_submission(submission_id, user: AuthUser) -> QuestionnaireSubmission:
    submission = _load_submission(submission_id, SubmissionStore())
    partner = _load_partner(submission.partner_id, PartnerStore())
    if not rbac.can_access_partner(user, partner):
        raise AuthorizationError("You do not have access to this submission", action=rbac.VIEW)
    return submission


def list_submissions_for_partner(partner_id, user: AuthUser) -> list[QuestionnaireSubmission]:
    partner = _load_partner(partner_id, PartnerStore())
    if not rbac.can_access_partner(user, partner):
        raise AuthorizationError("You do not have access to this partner", action=rbac.VIEW)
    return SubmissionStore().list_by_partner(partner_id)


# ── Writes ───────────────────────────────────────────────────────────────


def create_submission(payload, user: AuthUser, client_ip=None, user_agent=None) -> QuestionnaireSubmission:
    """Validate, evaluate and store a first submission, then update gate state.

    ``submittedBy`` / ``submittedByRole`` are required in the body but the
    stored values always come from the authenticated caller.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    now = to_iso(utcnow())
    errors = {}
    questionnaire_id = _require_str(payload, "questionnaireId", errors)
    partner_id = _require_str(payload, "partnerId", errors)
    submitted_by = _require_str(payload, "submittedBy", errors)
    claimed_role = payload.get("submittedByRole")
    if claimed_role not in [r.value for r in Role]:
        errors["submittedByRole"] = f"submittedByRole must be one of {[r.value for r in Role]}"
    signature = _parse_signature(payload.get("signature"), errors, now, client_ip, user_agent)
    sections = _parse_sections(payload.get("sections"), errors)
    _raise_errors(errors)

    partners, submissions, templates = PartnerStore(), SubmissionStore(), TemplateStore()
    partner = _load_partner(partner_id, partners)
    if not rbac.can_submit_questionnaire(user, partner, gate_for_questionnaire(questionnaire_id)):
        raise AuthorizationError("You cannot submit questionnaires for this partner", action=rbac.SUBMIT)

    template = templates.get_current(questionnaire_id)
    if template is None:
        raise NotFoundError("Template", questionnaire_id)
    _check_against_template(sections, template)

    if submitted_by.lower() != user.email.lower() or claimed_role != user.role.value:
        logger.info("Submission identity %s/%s replaced by session user %s/%s",
                    submitted_by, claimed_role, user.email, user.role.value,
                    extra={"partner_id": partner.id, "user_email": user.email})

    evaluated, statuses, overall = evaluate_submission(sections, template)
    submission = QuestionnaireSubmission(
        id=new_record_id("submission"),
        questionnaire_id=questionnaire_id,
        partner_id=partner.id,
        template_version=template.version,
        sections=evaluated,
        section_statuses=statuses,
        overall_status=overall,
        signature=signature,
        submitted_by=user.email,
        submitted_by_role=user.role.value,
        created_at=now,
        updated_at=now,
        submitted_at=now,
        ip_address=client_ip,
        user_agent=user_agent,
    )
    submissions.save(submission)
    logger.info(
        "Submission created: id=%s partner=%s questionnaire=%s v%d overall=%s",
        submission.id, partner.id, questionnaire_id, template.version, overall.value,
        extra={"partner_id": partner.id, "template_id": questionnaire_id, "user_email": user.email},
    )

    GateProgressionController(partners, submissions).record_submission(partner, submission, actor=user)
    return submission


def update_submission(submission_id, payload, user: AuthUser, client_ip=None, user_agent=None) -> QuestionnaireSubmission:
    """Edit in place against the pinned template version.

    ``id``, ``createdAt``, ``templateVersion``, ``questionnaireId`` and
    ``partnerId`` are preserved; a new signature is optional.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    partners, submissions, templates = PartnerStore(), SubmissionStore(), TemplateStore()
    existing = _load_submission(submission_id, submissions)
    partner = _load_partner(existing.partner_id, partners)
    if not rbac.can_edit_questionnaire(user, partner):
        raise AuthorizationError("You cannot edit this questionnaire", action=rbac.EDIT)

    now = to_iso(utcnow())
    errors = {}
    sections = _parse_sections(payload.get("sections"), errors)
    signature = existing.signature
    if "signature" in payload:
        signature = _parse_signature(payload["signature"], errors, now, client_ip, user_agent)
    _raise_errors(errors)

    template = _pinned_template(templates, existing)
    _check_against_template(sections, template)

    evaluated, statuses, overall = evaluate_submission(sections, template)
    existing.sections = evaluated
    existing.section_statuses = statuses
    existing.overall_status = overall
    existing.signature = signature
    existing.submitted_by = user.email
    existing.submitted_by_role = user.role.value
    existing.updated_at = now
    existing.ip_address = client_ip or existing.ip_address
    existing.user_agent = user_agent or existing.user_agent
    submissions.save(existing)
    logger.info(
        "Submission updated: id=%s v%d overall=%s by=%s",
        existing.id, existing.template_version, overall.value, user.email,
        extra={"partner_id": partner.id, "template_id": existing.questionnaire_id, "user_email": user.email},
    )

    GateProgressionController(partners, submissions).record_submission(partner, existing, actor=user)
    return existing


def migrate_submission(submission_id, user: AuthUser) -> QuestionnaireSubmission:
    """Repin a submission to the current template version and re-evaluate (PDM only)."""
    if not rbac.can_manage_templates(user):
        raise AuthorizationError("Only a PDM can migrate submissions", action="migrate")

    partners, submissions, templates = PartnerStore(), SubmissionStore(), TemplateStore()
    submission = _load_submission(submission_id, submissions)
    partner = _load_partner(submission.partner_id, partners)
    current = templates.get_current(submission.questionnaire_id)
    if current is None:
        raise NotFoundError("Template", submission.questionnaire_id)
    if current.version == submission.template_version:
        return submission

    declared = {s.id for s in current.sections}
    orphaned = [s.section_id for s in submission.sections if declared and s.section_id not in declared]
    if orphaned:
        raise ValidationError(
            f"Sections {', '.join(orphaned)} no longer exist in template {current.id} v{current.version}",
            details={"sections": orphaned},
        )

    answers = [SectionData(section_id=s.section_id, fields=dict(s.fields)) for s in submission.sections]
    # Answers must satisfy the new version's required fields before repinning
    _check_against_template(answers, current)
    evaluated, statuses, overall = evaluate_submission(answers, current)
    previous = submission.template_version
    submission.template_version = current.version
    submission.sections = evaluated
    submission.section_statuses = statuses
    submission.overall_status = overall
    submission.updated_at = to_iso(utcnow())
    submissions.save(submission)
    logger.warning(
        "Submission migrated: id=%s v%d→v%d overall=%s by=%s",
        submission.id, previous, current.version, overall.value, user.email,
        extra={"event_type": "submission_migrated", "partner_id": partner.id, "user_email": user.email},
    )

    GateProgressionController(partners, submissions).record_submission(partner, submission, actor=user)
    return submission


def reevaluate_submission(submission_id, user: AuthUser) -> dict:
    """Recompute the verdict against the pinned version without saving it."""
    submission = get_submission(submission_id, user)
    template = _pinned_template(TemplateStore(), submission)
    answers = [SectionData(section_id=s.section_id, fields=dict(s.fields)) for s in submission.sections]
    _, statuses, overall = evaluate_submission(answers, template)
    return {
        "submissionId": submission.id,
        "questionnaireId": submission.questionnaire_id,
        "templateVersion": submission.template_version,
        "storedOverallStatus": submission.overall_status.value,
        "overallStatus": overall.value,
        "matchesStored": overall == submission.overall_status,
        "sectionStatuses": {sid: st.to_dict() for sid, st in statuses.items()},
    }
