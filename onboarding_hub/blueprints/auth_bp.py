"""
Partner Onboarding Hub
Auth blueprint — the caller's identity and session.

Token issuance belongs to the identity provider; the hub only reads the
session it is handed.

Endpoints:
    GET    /api/v1/auth/me        current user, role capabilities, dashboard hint
    DELETE /api/v1/auth/session   log out (clears the session cookie)
"""

from flask import Blueprint, jsonify

from onboarding_hub.auth import clear_session_cookie, current_session, current_user
from onboarding_hub.services import rbac

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


@auth_bp.route("/me", methods=["GET"])
def me():
    user = current_user()
    session = current_session()
    return jsonify({
        "user": user.to_dict(),
        "session": session.to_dict() if session else None,
        "permissions": {
            "manageTemplates": rbac.can_manage_templates(user),
            "deletePartners": rbac.can_delete_partner(user),
            "overrideGates": rbac.can_override_gate(user),
        },
        "gates": rbac.relevant_gates_for_role(user.role),
        "dashboardMessage": rbac.dashboard_message(user),
    })


@auth_bp.route("/session", methods=["DELETE"])
def logout():
    user = current_user()
    response = jsonify({"message": "Logged out", "email": user.email})
    return clear_session_cookie(response)
