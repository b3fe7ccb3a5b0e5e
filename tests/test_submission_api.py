"""
Submission API Tests

Tests cover:
  - Create: server-side evaluation, version pin, gate auto-advance
  - Strategic classification failure blocks progression
  - Validation (required fields, signature, roles) and 404 / 403 ordering
  - Update: re-evaluated against the pinned template version
  - Migrate: PDM-only repin to the current version
  - Audit re-evaluation endpoint
"""

import copy

from conftest import PAM_EMAIL, all_yes, signature_payload, strategic_answers


def _template(client, headers, template_id="pre-contract"):
    res = client.get(f"/api/v1/template/{template_id}", headers=headers)
    assert res.status_code == 200
    return res.get_json()


def _pre_contract_sections(template, **strategic):
    sections = all_yes(template)
    for section in sections:
        if section["sectionId"] == "strategic-classification":
            section["fields"].update(strategic_answers(**strategic))
    return sections


def _payload(partner_id, sections, questionnaire_id="pre-contract", **overrides):
    body = {
        "questionnaireId": questionnaire_id,
        "partnerId": partner_id,
        "submittedBy": PAM_EMAIL,
        "submittedByRole": "PAM",
        "sections": sections,
        "signature": signature_payload(),
    }
    body.update(overrides)
    return body


def _submit(client, headers, partner_id, sections, **overrides):
    return client.post("/api/v1/submissions", json=_payload(partner_id, sections, **overrides), headers=headers)


def _section(submission, section_id):
    return next(s for s in submission["sections"] if s["sectionId"] == section_id)


# ═══════════════════════════════════════════════════════════════
# 1. CREATE
# ═══════════════════════════════════════════════════════════════

class TestCreateSubmission:
    def test_passing_submission_advances_partner(self, client, pam_headers, partner, templates):
        template = _template(client, pam_headers)
        res = _submit(client, pam_headers, partner["id"], _pre_contract_sections(template))
        assert res.status_code == 201, res.get_json()
        submission = res.get_json()
        assert submission["overallStatus"] == "pass"
        assert submission["templateVersion"] == 1
        assert submission["id"].startswith("submission-")
        assert set(submission["sectionStatuses"]) == {s["id"] for s in template["sections"]}

        stored = client.get(f"/api/v1/partner/{partner['id']}", headers=pam_headers).get_json()
        assert stored["currentGate"] == "gate-0"
        assert stored["gates"]["pre-contract"]["status"] == "passed"
        assert stored["gates"]["pre-contract"]["questionnaires"] == {"pre-contract": submission["id"]}
        assert stored["gates"]["gate-0"]["status"] == "in-progress"

    def test_ccv_percentage_is_derived(self, client, pam_headers, partner, templates):
        template = _template(client, pam_headers)
        submission = _submit(client, pam_headers, partner["id"], _pre_contract_sections(template)).get_json()
        strategic = _section(submission, "strategic-classification")
        assert strategic["fields"]["ccv-percentage-of-lrp"] == "12.00"

    def test_tier_0_below_threshold_fails_and_stays(self, client, pam_headers, partner, templates):
        template = _template(client, pam_headers)
        sections = _pre_contract_sections(template, tier="Tier 0", ccv=40000000, lrp=500000000)
        res = _submit(client, pam_headers, partner["id"], sections)
        assert res.status_code == 201
        submission = res.get_json()
        assert submission["overallStatus"] == "fail"
        strategic = submission["sectionStatuses"]["strategic-classification"]
        assert strategic["result"] == "fail"
        assert "Tier 0 requires CCV ≥ $50M" in strategic["failureReasons"]

        stored = client.get(f"/api/v1/partner/{partner['id']}", headers=pam_headers).get_json()
        assert stored["currentGate"] == "pre-contract"
        assert stored["gates"]["pre-contract"]["status"] == "failed"
        assert "Tier 0 requires CCV ≥ $50M" in stored["gates"]["pre-contract"]["blockers"]

    def test_client_statuses_are_ignored(self, client, pam_headers, partner, templates):
        template = _template(client, pam_headers)
        sections = _pre_contract_sections(template)
        profile = next(s for s in sections if s["sectionId"] == "partner-profile")
        profile["fields"]["partner-market-presence"] = "No"
        profile["status"] = {"result": "pass", "failureReasons": []}

        submission = _submit(client, pam_headers, partner["id"], sections,
                             overallStatus="pass").get_json()
        assert submission["sectionStatuses"]["partner-profile"]["result"] == "fail"
        assert submission["sectionStatuses"]["partner-profile"]["failureReasons"] == [
            "Partner must have an established market presence",
        ]
        assert submission["overallStatus"] == "fail"

    def test_identity_comes_from_session(self, client, pdm_headers, partner, templates):
        template = _template(client, pdm_headers)
        submission = _submit(client, pdm_headers, partner["id"], _pre_contract_sections(template),
                             submittedBy="someone@example.com", submittedByRole="PAM").get_json()
        assert submission["submittedBy"] == "pdm.admin@example.com"
        assert submission["submittedByRole"] == "PDM"

    def test_signature_is_stamped(self, client, pam_headers, partner, templates):
        template = _template(client, pam_headers)
        res = client.post(
            "/api/v1/submissions",
            json=_payload(partner["id"], _pre_contract_sections(template)),
            headers={**pam_headers, "X-Forwarded-For": "203.0.113.7, 10.0.0.1", "User-Agent": "pytest-agent"},
        )
        signature = res.get_json()["signature"]
        assert signature["ipAddress"] == "203.0.113.7"
        assert signature["userAgent"] == "pytest-agent"
        assert signature["timestamp"]
        assert signature["signerEmail"] == PAM_EMAIL


class TestCreateValidation:
    def test_missing_required_answer(self, client, pam_headers, partner, templates):
        template = _template(client, pam_headers)
        sections = _pre_contract_sections(template)
        next(s for s in sections if s["sectionId"] == "pdm-engagement")["fields"].pop("pdm-assigned")
        res = _submit(client, pam_headers, partner["id"], sections)
        assert res.status_code == 400
        assert res.get_json()["error"] == '"Has a PDM been assigned to this partner?" is required'

    def test_unknown_section(self, client, pam_headers, partner, templates):
        template = _template(client, pam_headers)
        sections = _pre_contract_sections(template) + [{"sectionId": "extra", "fields": {}}]
        res = _submit(client, pam_headers, partner["id"], sections)
        assert res.status_code == 400
        assert "extra" in res.get_json()["details"]

    def test_missing_body_fields_are_all_reported(self, client, pam_headers):
        res = client.post("/api/v1/submissions", json={"sections": []}, headers=pam_headers)
        assert res.status_code == 400
        details = res.get_json()["details"]
        for key in ("questionnaireId", "partnerId", "submittedBy", "submittedByRole", "signature"):
            assert key in details

    def test_bad_signature(self, client, pam_headers, partner, templates):
        template = _template(client, pam_headers)
        res = _submit(client, pam_headers, partner["id"], _pre_contract_sections(template),
                      signature={"type": "stamp", "data": "", "signerName": "Pat", "signerEmail": "nope"})
        assert res.status_code == 400
        details = res.get_json()["details"]
        assert {"signature.type", "signature.data", "signature.signerEmail"} <= set(details)

    def test_bad_role(self, client, pam_headers, partner, templates):
        template = _template(client, pam_headers)
        res = _submit(client, pam_headers, partner["id"], _pre_contract_sections(template),
                      submittedByRole="TPM")
        assert res.status_code == 400

    def test_other_pam_is_forbidden(self, client, other_pam_headers, partner, templates):
        res = _submit(client, other_pam_headers, partner["id"], [])
        assert res.status_code == 403

    def test_missing_partner_is_404_before_403(self, client, other_pam_headers, templates):
        res = _submit(client, other_pam_headers, "partner-missing", [])
        assert res.status_code == 404

    def test_unknown_questionnaire(self, client, pam_headers, partner, templates):
        res = _submit(client, pam_headers, partner["id"], [], questionnaireId="gate-9")
        assert res.status_code == 404


# ═══════════════════════════════════════════════════════════════
# 2. READ, UPDATE & PINNING
# ═══════════════════════════════════════════════════════════════

def _add_reference_check(client, pdm_headers, required=True):
    """PDM adds a question with a rule; returns the new template."""
    template = _template(client, pdm_headers)
    fields = copy.deepcopy(template["fields"])
    fields.append({"id": "reference-check", "type": "radio", "label": "Reference check done?",
                   "options": ["Yes", "No"], "required": required, "sectionId": "partner-profile",
                   "order": len(fields)})
    sections = copy.deepcopy(template["sections"])
    profile = next(s for s in sections if s["id"] == "partner-profile")
    profile["passFailCriteria"]["rules"].append({
        "fieldId": "reference-check", "operator": "equals", "value": "Yes",
        "failureMessage": "Reference check must be done",
    })
    res = client.put("/api/v1/template/pre-contract", json={
        "fields": fields, "sections": sections, "version": template["version"],
    }, headers=pdm_headers)
    assert res.status_code == 200, res.get_json()
    return res.get_json()


class TestUpdateSubmission:
    def _create(self, client, headers, partner):
        template = _template(client, headers)
        res = _submit(client, headers, partner["id"], _pre_contract_sections(template, tier="Tier 1", ccv=1))
        assert res.status_code == 201, res.get_json()
        return template, res.get_json()

    def test_read_and_list(self, client, pam_headers, other_pam_headers, partner, templates):
        _, submission = self._create(client, pam_headers, partner)
        assert client.get(f"/api/v1/submission/{submission['id']}", headers=pam_headers).status_code == 200
        assert client.get(f"/api/v1/submission/{submission['id']}",
                          headers=other_pam_headers).status_code == 403
        assert client.get("/api/v1/submission/submission-missing", headers=pam_headers).status_code == 404

        listed = client.get(f"/api/v1/partner/{partner['id']}/submissions", headers=pam_headers).get_json()
        assert [s["id"] for s in listed["items"]] == [submission["id"]]

    def test_update_re_evaluates_and_keeps_identity(self, client, pam_headers, partner, templates):
        template, submission = self._create(client, pam_headers, partner)
        assert submission["overallStatus"] == "fail"

        res = client.put(f"/api/v1/submission/{submission['id']}",
                         json={"sections": _pre_contract_sections(template)}, headers=pam_headers)
        assert res.status_code == 200, res.get_json()
        updated = res.get_json()
        assert updated["overallStatus"] == "pass"
        assert updated["id"] == submission["id"]
        assert updated["createdAt"] == submission["createdAt"]
        assert updated["signature"]["signerName"] == submission["signature"]["signerName"]

        # The fix lets the partner through the current gate
        stored = client.get(f"/api/v1/partner/{partner['id']}", headers=pam_headers).get_json()
        assert stored["currentGate"] == "gate-0"

    def test_update_uses_pinned_version(self, client, pam_headers, pdm_headers, partner, templates):
        template, submission = self._create(client, pam_headers, partner)
        assert _add_reference_check(client, pdm_headers)["version"] == 2

        # The v1 answers stay valid: the new required question is not part of v1
        res = client.put(f"/api/v1/submission/{submission['id']}",
                         json={"sections": _pre_contract_sections(template)}, headers=pam_headers)
        assert res.status_code == 200, res.get_json()
        assert res.get_json()["templateVersion"] == 1
        assert res.get_json()["overallStatus"] == "pass"

    def test_update_forbidden_for_other_pam(self, client, pam_headers, other_pam_headers, partner, templates):
        template, submission = self._create(client, pam_headers, partner)
        res = client.put(f"/api/v1/submission/{submission['id']}",
                         json={"sections": _pre_contract_sections(template)}, headers=other_pam_headers)
        assert res.status_code == 403

    def test_update_missing_submission(self, client, pam_headers):
        res = client.put("/api/v1/submission/submission-missing", json={"sections": []}, headers=pam_headers)
        assert res.status_code == 404


# ═══════════════════════════════════════════════════════════════
# 3. MIGRATE & AUDIT
# ═══════════════════════════════════════════════════════════════

class TestMigrateSubmission:
    def _passed(self, client, headers, partner):
        template = _template(client, headers)
        res = _submit(client, headers, partner["id"], _pre_contract_sections(template))
        assert res.get_json()["overallStatus"] == "pass"
        return res.get_json()

    def test_pam_cannot_migrate(self, client, pam_headers, partner, templates):
        submission = self._passed(client, pam_headers, partner)
        res = client.post(f"/api/v1/submission/{submission['id']}/migrate", headers=pam_headers)
        assert res.status_code == 403

    def test_migrate_repins_and_re_evaluates(self, client, pam_headers, pdm_headers, partner, templates):
        submission = self._passed(client, pam_headers, partner)
        _add_reference_check(client, pdm_headers, required=False)

        res = client.post(f"/api/v1/submission/{submission['id']}/migrate", headers=pdm_headers)
        assert res.status_code == 200, res.get_json()
        migrated = res.get_json()
        assert migrated["templateVersion"] == 2
        assert migrated["overallStatus"] == "fail"
        assert migrated["sectionStatuses"]["partner-profile"]["failureReasons"] == [
            "Reference check must be done",
        ]

        # Past gate: the partner does not regress
        stored = client.get(f"/api/v1/partner/{partner['id']}", headers=pdm_headers).get_json()
        assert stored["currentGate"] == "gate-0"

    def test_migrate_rejects_unanswered_required_field(self, client, pam_headers, pdm_headers, partner, templates):
        submission = self._passed(client, pam_headers, partner)
        _add_reference_check(client, pdm_headers)

        res = client.post(f"/api/v1/submission/{submission['id']}/migrate", headers=pdm_headers)
        assert res.status_code == 400
        assert res.get_json()["details"]["reference-check"] == '"Reference check done?" is required'

        stored = client.get(f"/api/v1/submission/{submission['id']}", headers=pdm_headers).get_json()
        assert stored["templateVersion"] == 1
        assert stored["overallStatus"] == "pass"
        assert stored["updatedAt"] == submission["updatedAt"]

    def test_migrate_when_current_is_a_no_op(self, client, pam_headers, pdm_headers, partner, templates):
        submission = self._passed(client, pam_headers, partner)
        res = client.post(f"/api/v1/submission/{submission['id']}/migrate", headers=pdm_headers)
        assert res.status_code == 200
        assert res.get_json()["updatedAt"] == submission["updatedAt"]


class TestReevaluation:
    def test_evaluation_matches_stored(self, client, pam_headers, partner, templates):
        template = _template(client, pam_headers)
        submission = _submit(client, pam_headers, partner["id"], _pre_contract_sections(template)).get_json()
        res = client.get(f"/api/v1/submission/{submission['id']}/evaluation", headers=pam_headers)
        assert res.status_code == 200
        body = res.get_json()
        assert body["templateVersion"] == 1
        assert body["overallStatus"] == "pass"
        assert body["matchesStored"] is True
        assert set(body["sectionStatuses"]) == {s["id"] for s in template["sections"]}

    def test_evaluation_ignores_later_template_edits(self, client, pam_headers, pdm_headers, partner, templates):
        template = _template(client, pam_headers)
        submission = _submit(client, pam_headers, partner["id"], _pre_contract_sections(template)).get_json()
        _add_reference_check(client, pdm_headers)
        body = client.get(f"/api/v1/submission/{submission['id']}/evaluation", headers=pam_headers).get_json()
        assert body["overallStatus"] == "pass"
        assert body["matchesStored"] is True
