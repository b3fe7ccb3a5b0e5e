"""
Partner Onboarding Hub
Submission blueprint — questionnaire submissions.

Endpoints:
    POST /api/v1/submissions                     create (evaluated server-side)
    GET  /api/v1/submission/<id>                 read
    PUT  /api/v1/submission/<id>                 edit in place (pinned template version)
    POST /api/v1/submission/<id>/migrate         repin to current template version (PDM)
    GET  /api/v1/submission/<id>/evaluation      audit re-evaluation, nothing saved
"""

import logging

from flask import Blueprint, jsonify, request

from onboarding_hub.auth import current_user, require_role
from onboarding_hub.blueprints import json_body
from onboarding_hub.models.records import Role
from onboarding_hub.services import submission_service
from onboarding_hub.utils.helpers import client_ip

logger = logging.getLogger(__name__)

submission_bp = Blueprint("submissions", __name__, url_prefix="/api/v1")


def _user_agent():
    return request.headers.get("User-Agent") or None


@submission_bp.route("/submissions", methods=["POST"])
def create_submission():
    submission = submission_service.create_submission(
        json_body(), current_user(), client_ip=client_ip(request), user_agent=_user_agent(),
    )
    return jsonify(submission.to_dict()), 201


@submission_bp.route("/submission/<submission_id>", methods=["GET"])
def get_submission(submission_id):
    return jsonify(submission_service.get_submission(submission_id, current_user()).to_dict())


@submission_bp.route("/submission/<submission_id>", methods=["PUT"])
def update_submission(submission_id):
    submission = submission_service.update_submission(
        submission_id, json_body(), current_user(), client_ip=client_ip(request), user_agent=_user_agent(),
    )
    return jsonify(submission.to_dict())


@submission_bp.route("/submission/<submission_id>/migrate", methods=["POST"])
@require_role(Role.PDM)
def migrate_submission(submission_id):
    return jsonify(submission_service.migrate_submission(submission_id, current_user()).to_dict())


@submission_bp.route("/submission/<submission_id>/evaluation", methods=["GET"])
def reevaluate_submission(submission_id):
    return jsonify(submission_service.reevaluate_submission(submission_id, current_user()))
