"""
Partner Onboarding Hub
Partner blueprint — partner CRUD and gate progression endpoints.

Endpoints summary:
    PARTNER  /api/v1/partners                              GET, POST
             /api/v1/partner/<id>                          GET, PUT, DELETE (PDM)

    GATES    /api/v1/partner/<id>/gates                    GET
             /api/v1/partner/<id>/gates/advance            POST
             /api/v1/partner/<id>/gates/override           POST   (PDM)
             /api/v1/partner/<id>/gates/<gate_id>/block    POST

    HISTORY  /api/v1/partner/<id>/submissions              GET
"""

import logging

from flask import Blueprint, jsonify, request

from onboarding_hub.auth import current_user, require_role
from onboarding_hub.blueprints import json_body, paginate_list
from onboarding_hub.models.gates import GATE_ORDER
from onboarding_hub.models.records import Role
from onboarding_hub.services import partner_service, submission_service
from onboarding_hub.services.gate_progression import GateProgressionController, gate_summary

logger = logging.getLogger(__name__)

partner_bp = Blueprint("partners", __name__, url_prefix="/api/v1")


# ═══════════════════════════════════════════════════════════════════════════
#  PARTNER CRUD
# ═══════════════════════════════════════════════════════════════════════════

@partner_bp.route("/partners", methods=["GET"])
def list_partners():
    user = current_user()
    if request.args.get("grouped", "").lower() in ("1", "true", "yes"):
        groups = partner_service.group_partners(user)
        return jsonify({
            "groups": {gid: [p.to_dict() for p in groups.get(gid, [])] for gid in GATE_ORDER},
            "total": sum(len(v) for v in groups.values()),
        })

    partners = partner_service.list_partners(user, gate=request.args.get("gate") or None)
    items, total = paginate_list(partners)
    return jsonify({"items": [p.to_dict() for p in items], "total": total})


@partner_bp.route("/partners", methods=["POST"])
def create_partner():
    partner = partner_service.create_partner(json_body(), current_user())
    return jsonify(partner.to_dict()), 201


@partner_bp.route("/partner/<partner_id>", methods=["GET"])
def get_partner(partner_id):
    partner = partner_service.get_partner(partner_id, current_user())
    return jsonify(partner.to_dict())


@partner_bp.route("/partner/<partner_id>", methods=["PUT"])
def update_partner(partner_id):
    partner = partner_service.update_partner(partner_id, json_body(), current_user())
    return jsonify(partner.to_dict())


@partner_bp.route("/partner/<partner_id>", methods=["DELETE"])
def delete_partner(partner_id):
    removed = partner_service.delete_partner(partner_id, current_user())
    return jsonify({"message": "Partner deleted", "id": partner_id, "submissionsDeleted": removed})


# ═══════════════════════════════════════════════════════════════════════════
#  GATES
# ═══════════════════════════════════════════════════════════════════════════

@partner_bp.route("/partner/<partner_id>/gates", methods=["GET"])
def get_gates(partner_id):
    partner = partner_service.get_partner(partner_id, current_user())
    return jsonify({
        "partnerId": partner.id,
        "currentGate": partner.current_gate,
        "gates": gate_summary(partner),
    })


@partner_bp.route("/partner/<partner_id>/gates/advance", methods=["POST"])
def advance_gate(partner_id):
    partner = GateProgressionController().advance(partner_id, current_user())
    return jsonify(partner.to_dict())


@partner_bp.route("/partner/<partner_id>/gates/override", methods=["POST"])
@require_role(Role.PDM)
def override_gate(partner_id):
    data = json_body()
    partner = GateProgressionController().override_gate(
        partner_id, data.get("targetGate"), current_user(), reason=data.get("reason"),
    )
    return jsonify(partner.to_dict())


@partner_bp.route("/partner/<partner_id>/gates/<gate_id>/block", methods=["POST"])
def block_gate(partner_id, gate_id):
    data = json_body()
    partner = GateProgressionController().block_gate(partner_id, gate_id, data.get("blockers"), current_user())
    return jsonify(partner.to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  SUBMISSION HISTORY
# ═══════════════════════════════════════════════════════════════════════════

@partner_bp.route("/partner/<partner_id>/submissions", methods=["GET"])
def list_partner_submissions(partner_id):
    submissions = submission_service.list_submissions_for_partner(partner_id, current_user())
    return jsonify({"items": [s.to_dict() for s in submissions], "total": len(submissions)})
