"""
Template Store & Versioning.

Keeps exactly one "current" template per template id plus an append-only
log of frozen TemplateVersion snapshots:

    templates/current/<templateId>                 current pointer
    templates/versions/<templateId>/<version:06d>  immutable snapshot

Saving is append-then-swap:
    1. validate (nothing is written when validation fails)
    2. compare the editor's base version with the stored current version
    3. insert the next version record (insert-only, so a concurrent writer
       that got there first makes this fail)
    4. move the current pointer and drop the cached copy

Losing writers get a retryable ConflictError instead of a lost update.

Usage:
    from onboarding_hub.services.template_store import TemplateStore

    store = TemplateStore()
    tpl = store.get_current("gate-0")
    tpl.fields.append(new_field)
    tpl = store.save(tpl, updated_by="pdm@example.com")   # version + 1
    old = store.get_version("gate-0", 3)
"""

from __future__ import annotations

import copy
import logging
from collections import Counter

from onboarding_hub.core.exceptions import (
    ConflictError,
    KeyExistsError,
    NotFoundError,
    ValidationError,
)
from onboarding_hub.models.records import (
    FIELD_TYPES,
    OPTION_FIELD_TYPES,
    RULE_OPERATORS,
    QuestionnaireTemplate,
    TemplateVersion,
)
from onboarding_hub.services import cache_service
from onboarding_hub.services.blob_store import BlobStore
from onboarding_hub.utils.helpers import to_iso, utcnow

logger = logging.getLogger(__name__)

NAMESPACE = "templates"


def _current_key(template_id: str) -> str:
    return f"current/{template_id}"


def _version_prefix(template_id: str) -> str:
    return f"versions/{template_id}/"


def _version_key(template_id: str, version: int) -> str:
    # Zero padded so lexical key order equals numeric version order
    return f"{_version_prefix(template_id)}{version:06d}"


# ═════════════════════════════════════════════════════════════════════════════
# Validation
# ═════════════════════════════════════════════════════════════════════════════

def validate_template(template: QuestionnaireTemplate) -> list[str]:
    """Return every structural problem with *template*; empty means valid."""
    errors: list[str] = []

    if not template.id:
        errors.append("Template id is required")

    field_ids = [f.id for f in template.fields]
    if any(not fid for fid in field_ids):
        errors.append("All fields must have IDs")
    duplicates = sorted(fid for fid, n in Counter(field_ids).items() if fid and n > 1)
    if duplicates:
        errors.append(f"Duplicate field IDs found: {', '.join(duplicates)}")

    for f in template.fields:
        if not f.label.strip():
            errors.append("All fields must have labels")
            break

    for f in template.fields:
        name = f.label or f.id
        if f.type not in FIELD_TYPES:
            errors.append(f'Field "{name}" has unknown type "{f.type}"')
        elif f.type in OPTION_FIELD_TYPES and not [o for o in (f.options or []) if str(o).strip()]:
            errors.append(f'Field "{name}" requires options')

    section_ids = [s.id for s in template.sections]
    if any(not sid for sid in section_ids):
        errors.append("All sections must have IDs")
    dup_sections = sorted(sid for sid, n in Counter(section_ids).items() if sid and n > 1)
    if dup_sections:
        errors.append(f"Duplicate section IDs found: {', '.join(dup_sections)}")
    for s in template.sections:
        if not s.title.strip():
            errors.append(f'Section "{s.id}" must have a title')

    if template.sections:
        declared = set(section_ids)
        for f in template.fields:
            if f.section_id not in declared:
                errors.append(f'Field "{f.label or f.id}" belongs to unknown section "{f.section_id}"')

    active_ids = {f.id for f in template.fields if not f.removed}
    for s in template.sections:
        criteria = s.pass_fail_criteria
        if criteria is None:
            continue
        for rule in criteria.rules:
            where = f'Section "{s.title or s.id}" rule on "{rule.field_id}"'
            if rule.operator not in RULE_OPERATORS:
                errors.append(f'{where} uses unknown operator "{rule.operator}"')
            if rule.field_id not in active_ids:
                errors.append(f"{where} references an unknown or removed field")
            if rule.operator == "in" and not isinstance(rule.value, list):
                errors.append(f"{where} must use a list value with the 'in' operator")

    return errors


def _raise_if_invalid(template: QuestionnaireTemplate) -> None:
    errors = validate_template(template)
    if errors:
        raise ValidationError(errors[0], details={"errors": errors})


# ═════════════════════════════════════════════════════════════════════════════
# Store
# ═════════════════════════════════════════════════════════════════════════════

class TemplateStore:
    def __init__(self, blobs: BlobStore | None = None):
        self._blobs = blobs or BlobStore()

    # ── Reads ────────────────────────────────────────────────────────────

    def get_current(self, template_id: str) -> QuestionnaireTemplate | None:
        """Current template through the read-through cache."""
        data = cache_service.get_cached(
            cache_service.template_key(template_id),
            ttl=cache_service.template_ttl(),
            loader=lambda: self._blobs.get(NAMESPACE, _current_key(template_id)),
        )
        return QuestionnaireTemplate.from_dict(data) if data is not None else None

    def _get_current_uncached(self, template_id: str) -> QuestionnaireTemplate | None:
        data = self._blobs.get(NAMESPACE, _current_key(template_id))
        return QuestionnaireTemplate.from_dict(data) if data is not None else None

    def list_templates(self) -> list[QuestionnaireTemplate]:
        return [
            QuestionnaireTemplate.from_dict(d)
            for d in self._blobs.list_values(NAMESPACE, "current/")
        ]

    def get_version(self, template_id: str, version: int) -> TemplateVersion | None:
        data = self._blobs.get(NAMESPACE, _version_key(template_id, version))
        return TemplateVersion.from_dict(data) if data is not None else None

    def list_versions(self, template_id: str) -> list[TemplateVersion]:
        """All frozen versions, ascending."""
        versions = [
            TemplateVersion.from_dict(d)
            for d in self._blobs.list_values(NAMESPACE, _version_prefix(template_id))
        ]
        return sorted(versions, key=lambda v: v.version)

    def get_for_submission(self, template_id: str, version: int | None = None) -> QuestionnaireTemplate | None:
        """Template as a submission sees it.

        With a pin, only that exact version is acceptable. Without one, the
        current template is used.
        """
        if version is None:
            return self.get_current(template_id)
        snapshot = self.get_version(template_id, version)
        return snapshot.as_template() if snapshot is not None else None

    # ── Writes ───────────────────────────────────────────────────────────

    def create(self, template: QuestionnaireTemplate, created_by: str) -> QuestionnaireTemplate:
        """First write for a template id: version 1 and its snapshot."""
        _raise_if_invalid(template)
        if self._get_current_uncached(template.id) is not None:
            raise ConflictError("Template", f"Template {template.id} already exists")

        now = to_iso(utcnow())
        created = QuestionnaireTemplate(
            id=template.id,
            name=template.name,
            version=1,
            fields=copy.deepcopy(template.fields),
            sections=copy.deepcopy(template.sections),
            created_at=now,
            updated_at=now,
            updated_by=created_by,
        )
        self._append_version(created, created_by, now)
        self._blobs.set(NAMESPACE, _current_key(created.id), created.to_dict())
        cache_service.invalidate_template(created.id)
        logger.info("Template created: id=%s version=1 by=%s", created.id, created_by,
                    extra={"template_id": created.id})
        return created

    def save(self, template: QuestionnaireTemplate, updated_by: str) -> QuestionnaireTemplate:
        """Persist an edit as the next version.

        ``template.version`` must be the version the editor started from.
        The stored version is always current + 1, whatever the caller sent.
        """
        _raise_if_invalid(template)

        current = self._get_current_uncached(template.id)
        if current is None:
            raise NotFoundError("Template", template.id)
        if template.version != current.version:
            raise ConflictError(
                "Template",
                f"Template {template.id} was changed by someone else (now version {current.version}). "
                "Reload it and re-apply your edits.",
                current_version=current.version,
            )

        now = to_iso(utcnow())
        updated = QuestionnaireTemplate(
            id=current.id,
            name=template.name or current.name,
            version=current.version + 1,
            fields=copy.deepcopy(template.fields),
            sections=copy.deepcopy(template.sections),
            created_at=current.created_at,
            updated_at=now,
            updated_by=updated_by,
        )
        self._append_version(updated, updated_by, now)
        self._blobs.set(NAMESPACE, _current_key(updated.id), updated.to_dict())
        cache_service.invalidate_template(updated.id)
        logger.info(
            "Template saved: id=%s version=%d→%d by=%s",
            updated.id, current.version, updated.version, updated_by,
            extra={"template_id": updated.id},
        )
        return updated

    def _append_version(self, template: QuestionnaireTemplate, created_by: str, now: str) -> None:
        snapshot = TemplateVersion(
            template_id=template.id,
            version=template.version,
            name=template.name,
            fields=tuple(copy.deepcopy(template.fields)),
            sections=tuple(copy.deepcopy(template.sections)),
            created_at=now,
            created_by=created_by,
        )
        try:
            self._blobs.create(NAMESPACE, _version_key(template.id, template.version), snapshot.to_dict())
        except KeyExistsError as exc:
            logger.warning("Template version race lost: id=%s version=%d", template.id, template.version,
                           extra={"template_id": template.id})
            raise ConflictError(
                "Template",
                f"Template {template.id} version {template.version} was saved by someone else. "
                "Reload it and re-apply your edits.",
                current_version=template.version,
            ) from exc
