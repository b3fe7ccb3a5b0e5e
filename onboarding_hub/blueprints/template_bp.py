"""
Partner Onboarding Hub
Template blueprint — questionnaire templates and their version history.

Endpoints:
    GET /api/v1/templates                           current templates
    GET /api/v1/template/<id>                       current template
    PUT /api/v1/template/<id>                       save as next version (PDM)
    GET /api/v1/template/<id>/versions              frozen versions, ascending
    GET /api/v1/template/<id>/versions/<n>          one frozen version

PUT body:
    {"fields": [...], "sections": [...]?, "name": "..."?, "version": <base>?}

``version`` is the version the editor loaded.  When it no longer matches
the stored version the save is rejected with 409 and the client reloads.
"""

import logging

from flask import Blueprint, jsonify

from onboarding_hub.auth import current_user, require_role
from onboarding_hub.blueprints import json_body
from onboarding_hub.core.exceptions import MalformedCriteriaError, NotFoundError, ValidationError
from onboarding_hub.models.records import QuestionnaireTemplate, Role
from onboarding_hub.services.template_store import TemplateStore

logger = logging.getLogger(__name__)

template_bp = Blueprint("templates", __name__, url_prefix="/api/v1")


def _parse_version(raw) -> int:
    try:
        version = int(raw)
    except (TypeError, ValueError):
        version = 0
    if version < 1 or str(raw).strip() != str(version):
        raise ValidationError("Version must be a positive integer", details={"version": str(raw)})
    return version


@template_bp.route("/templates", methods=["GET"])
def list_templates():
    templates = sorted(TemplateStore().list_templates(), key=lambda t: t.id)
    return jsonify({"items": [t.to_dict() for t in templates], "total": len(templates)})


@template_bp.route("/template/<template_id>", methods=["GET"])
def get_template(template_id):
    template = TemplateStore().get_current(template_id)
    if template is None:
        raise NotFoundError("Template", template_id)
    return jsonify(template.to_dict())


@template_bp.route("/template/<template_id>", methods=["PUT"])
@require_role(Role.PDM)
def save_template(template_id):
    data = json_body()
    if "fields" not in data:
        raise ValidationError("fields is required", details={"fields": "required"})

    store = TemplateStore()
    user = current_user()
    current = store.get_current(template_id)

    body = {
        "id": template_id,
        "name": data.get("name") or (current.name if current else template_id),
        "fields": data["fields"],
        "version": data.get("version", current.version if current else 0),
    }
    if "sections" in data:
        body["sections"] = data["sections"]
    elif current is not None:
        body["sections"] = [s.to_dict() for s in current.sections]

    try:
        template = QuestionnaireTemplate.from_dict(body)
    except MalformedCriteriaError as exc:
        raise ValidationError(str(exc), details={"sections": str(exc)}) from exc

    if current is None:
        saved = store.create(template, created_by=user.email)
        return jsonify({**saved.to_dict(), "previousVersion": None}), 201

    saved = store.save(template, updated_by=user.email)
    return jsonify({**saved.to_dict(), "previousVersion": saved.version - 1})


@template_bp.route("/template/<template_id>/versions", methods=["GET"])
def list_versions(template_id):
    store = TemplateStore()
    versions = store.list_versions(template_id)
    if not versions and store.get_current(template_id) is None:
        raise NotFoundError("Template", template_id)
    return jsonify({"items": [v.to_dict() for v in versions], "total": len(versions)})


@template_bp.route("/template/<template_id>/versions/<version>", methods=["GET"])
def get_version(template_id, version):
    number = _parse_version(version)
    snapshot = TemplateStore().get_version(template_id, number)
    if snapshot is None:
        raise NotFoundError("Template version", f"{template_id} v{number}")
    return jsonify(snapshot.to_dict())
