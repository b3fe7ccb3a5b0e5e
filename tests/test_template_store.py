"""
Template Store & Versioning Tests

Tests cover:
  - create: version 1 plus its frozen snapshot
  - save: strictly increasing versions, one snapshot per save
  - Historical versions are immutable
  - Stale base version → ConflictError (no lost update)
  - Losing the version-insert race → ConflictError, pointer untouched
  - Validation failures write nothing
  - Read-through cache is invalidated on save
"""

import copy

import pytest

from onboarding_hub.core.exceptions import ConflictError, NotFoundError, ValidationError
from onboarding_hub.models.records import QuestionField, QuestionnaireTemplate
from onboarding_hub.services import cache_service
from onboarding_hub.services.blob_store import BlobStore
from onboarding_hub.services.template_store import TemplateStore, validate_template

EDITOR = "pdm.admin@example.com"


def _template(template_id="gate-0", version=0, labels=("Contract signed?",)):
    return QuestionnaireTemplate.from_dict({
        "id": template_id,
        "name": "Gate 0",
        "version": version,
        "fields": [
            {"id": f"q{i}", "type": "radio", "label": label, "options": ["Yes", "No"],
             "required": True, "order": i, "sectionId": "contract"}
            for i, label in enumerate(labels)
        ],
        "sections": [
            {"id": "contract", "title": "Contract",
             "passFailCriteria": {"type": "automatic",
                                  "rules": [{"fieldId": "q0", "operator": "equals", "value": "Yes"}]}},
        ],
    })


def _edit(template, label):
    edited = copy.deepcopy(template)
    edited.fields.append(QuestionField(id=f"q{len(edited.fields)}", type="text", label=label,
                                       order=len(edited.fields), section_id="contract"))
    return edited


# ═══════════════════════════════════════════════════════════════
# 1. CREATE & SAVE
# ═══════════════════════════════════════════════════════════════

class TestCreate:
    def test_create_starts_at_version_1(self):
        store = TemplateStore()
        created = store.create(_template(version=7), created_by=EDITOR)
        assert created.version == 1
        assert created.updated_by == EDITOR
        assert [v.version for v in store.list_versions("gate-0")] == [1]
        assert store.get_current("gate-0").version == 1

    def test_create_twice_conflicts(self):
        store = TemplateStore()
        store.create(_template(), created_by=EDITOR)
        with pytest.raises(ConflictError):
            store.create(_template(), created_by=EDITOR)

    def test_list_templates(self):
        store = TemplateStore()
        store.create(_template("gate-0"), created_by=EDITOR)
        store.create(_template("gate-1"), created_by=EDITOR)
        assert sorted(t.id for t in store.list_templates()) == ["gate-0", "gate-1"]


class TestSave:
    def test_versions_strictly_increase(self):
        store = TemplateStore()
        current = store.create(_template(), created_by=EDITOR)
        for n in range(3):
            current = store.save(_edit(current, f"Extra {n}"), updated_by=EDITOR)
        assert current.version == 4
        assert [v.version for v in store.list_versions("gate-0")] == [1, 2, 3, 4]

    def test_save_ignores_caller_version_bump(self):
        """Stored version is always current + 1."""
        store = TemplateStore()
        current = store.create(_template(), created_by=EDITOR)
        edited = _edit(current, "Extra")
        saved = store.save(edited, updated_by=EDITOR)
        assert saved.version == 2
        assert saved.created_at == current.created_at

    def test_save_unknown_template_is_not_found(self):
        with pytest.raises(NotFoundError):
            TemplateStore().save(_template("gate-9", version=1), updated_by=EDITOR)

    def test_historical_version_is_immutable(self):
        store = TemplateStore()
        v1 = store.create(_template(labels=("Original label",)), created_by=EDITOR)
        changed = copy.deepcopy(v1)
        changed.fields[0].label = "Rewritten label"
        store.save(changed, updated_by=EDITOR)

        snapshot = store.get_version("gate-0", 1)
        assert snapshot.fields[0].label == "Original label"
        assert store.get_version("gate-0", 2).fields[0].label == "Rewritten label"

    def test_replacing_a_field_keeps_the_old_version(self):
        """Version 3 has [A, B]; removing B and adding C yields version 4 [A, C]."""
        store = TemplateStore()
        current = store.create(_template(labels=("A",)), created_by=EDITOR)
        current = store.save(_edit(current, "Temp"), updated_by=EDITOR)
        current.fields = [current.fields[0], QuestionField(id="b", type="text", label="B", section_id="contract")]
        current = store.save(current, updated_by=EDITOR)
        assert current.version == 3

        current.fields = [current.fields[0], QuestionField(id="c", type="text", label="C", section_id="contract")]
        v4 = store.save(current, updated_by=EDITOR)
        assert v4.version == 4
        assert [f.label for f in v4.fields] == ["A", "C"]
        assert [f.label for f in store.get_version("gate-0", 3).fields] == ["A", "B"]
        assert store.get_version("gate-0", 3).fields == store.get_version("gate-0", 3).fields

    def test_get_for_submission_honours_pin(self):
        store = TemplateStore()
        v1 = store.create(_template(), created_by=EDITOR)
        store.save(_edit(v1, "Extra"), updated_by=EDITOR)
        assert len(store.get_for_submission("gate-0", 1).fields) == 1
        assert len(store.get_for_submission("gate-0").fields) == 2
        assert store.get_for_submission("gate-0", 9) is None


# ═══════════════════════════════════════════════════════════════
# 2. CONCURRENCY
# ═══════════════════════════════════════════════════════════════

class TestConflicts:
    def test_stale_base_version_conflicts(self):
        """Two editors start from the same version; the second save loses."""
        store = TemplateStore()
        base = store.create(_template(), created_by=EDITOR)
        for n in range(4):
            base = store.save(_edit(base, f"Warmup {n}"), updated_by=EDITOR)
        assert base.version == 5

        first = _edit(base, "Editor A")
        second = _edit(base, "Editor B")
        assert store.save(first, updated_by="a@example.com").version == 6

        with pytest.raises(ConflictError) as exc_info:
            store.save(second, updated_by="b@example.com")
        assert exc_info.value.current_version == 6
        assert exc_info.value.retryable is True
        assert [v.version for v in store.list_versions("gate-0")] == [1, 2, 3, 4, 5, 6]
        assert store.get_current("gate-0").fields[-1].label == "Editor A"

    def test_lost_version_insert_race_conflicts(self):
        """A concurrent writer already inserted the next version record."""
        store = TemplateStore()
        base = store.create(_template(), created_by=EDITOR)
        BlobStore().create("templates", "versions/gate-0/000002", {
            "templateId": "gate-0", "version": 2, "name": "Gate 0",
            "fields": [], "sections": [], "createdAt": "2026-01-01T00:00:00Z",
        })

        with pytest.raises(ConflictError):
            store.save(_edit(base, "Mine"), updated_by=EDITOR)
        assert store.get_current("gate-0").version == 1


# ═══════════════════════════════════════════════════════════════
# 3. VALIDATION
# ═══════════════════════════════════════════════════════════════

class TestValidation:
    def test_invalid_save_writes_nothing(self):
        store = TemplateStore()
        base = store.create(_template(), created_by=EDITOR)
        broken = copy.deepcopy(base)
        broken.fields.append(QuestionField(id="q0", type="text", label="Dup", section_id="contract"))

        with pytest.raises(ValidationError) as exc_info:
            store.save(broken, updated_by=EDITOR)
        assert "Duplicate field IDs found: q0" in exc_info.value.details["errors"]
        assert [v.version for v in store.list_versions("gate-0")] == [1]
        assert store.get_current("gate-0").version == 1

    def test_collects_every_problem(self):
        template = QuestionnaireTemplate.from_dict({
            "id": "gate-0", "name": "Gate 0", "version": 1,
            "fields": [
                {"id": "", "type": "text", "label": "No id", "sectionId": "contract"},
                {"id": "pick", "type": "select", "label": "Pick one", "sectionId": "contract"},
                {"id": "odd", "type": "slider", "label": "Odd", "sectionId": "nowhere"},
            ],
            "sections": [{"id": "contract", "title": "Contract", "passFailCriteria": {
                "type": "automatic",
                "rules": [{"fieldId": "ghost", "operator": "in", "value": "Yes"}],
            }}],
        })
        errors = validate_template(template)
        assert "All fields must have IDs" in errors
        assert 'Field "Pick one" requires options' in errors
        assert 'Field "Odd" has unknown type "slider"' in errors
        assert 'Field "Odd" belongs to unknown section "nowhere"' in errors
        assert any("unknown or removed field" in e for e in errors)
        assert any("'in' operator" in e for e in errors)

    def test_rules_may_not_reference_removed_fields(self):
        template = _template()
        template.fields[0].removed = True
        assert any("unknown or removed field" in e for e in validate_template(template))


# ═══════════════════════════════════════════════════════════════
# 4. CACHE
# ═══════════════════════════════════════════════════════════════

class TestCache:
    def test_current_template_is_cached(self):
        store = TemplateStore()
        store.create(_template(), created_by=EDITOR)
        store.get_current("gate-0")
        assert cache_service.get_cached(cache_service.template_key("gate-0")) is not None

    def test_save_invalidates_cached_copy(self):
        store = TemplateStore()
        v1 = store.create(_template(), created_by=EDITOR)
        assert store.get_current("gate-0").version == 1
        store.save(_edit(v1, "Extra"), updated_by=EDITOR)
        assert store.get_current("gate-0").version == 2
