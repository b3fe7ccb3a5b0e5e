"""
Shared pytest fixtures for the Partner Onboarding Hub test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate, cache flush (autouse)
    - client: Flask test client (function-scoped)
    - pam_user / other_pam_user / pdm_user: AuthUser identities
    - pam_headers / other_pam_headers / pdm_headers: Bearer session headers
    - templates: default questionnaire templates seeded at version 1
    - partner: partner owned by pam_user, created via the API
"""

import pytest

from onboarding_hub import create_app
from onboarding_hub.models import db as _db
from onboarding_hub.models.records import AuthUser, Role
from onboarding_hub.services import cache_service
from onboarding_hub.services.session_service import issue_session_token

PAM_EMAIL = "pam.owner@example.com"
OTHER_PAM_EMAIL = "pam.other@example.com"
PDM_EMAIL = "pdm.admin@example.com"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # Template cache outlives the tables; never let it leak between tests
        cache_service.reset_backend()
        cache_service.clear_all()
        yield
        cache_service.clear_all()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Identities ───────────────────────────────────────────────────────────


@pytest.fixture()
def pam_user():
    return AuthUser(id="u-pam-1", email=PAM_EMAIL, role=Role.PAM, name="Pat Owner")


@pytest.fixture()
def other_pam_user():
    return AuthUser(id="u-pam-2", email=OTHER_PAM_EMAIL, role=Role.PAM, name="Olive Other")


@pytest.fixture()
def pdm_user():
    return AuthUser(id="u-pdm-1", email=PDM_EMAIL, role=Role.PDM, name="Dana Admin")


def auth_headers(user, **kwargs):
    """Authorization header carrying a fresh session token for *user*."""
    return {"Authorization": f"Bearer {issue_session_token(user, **kwargs)}"}


@pytest.fixture()
def pam_headers(pam_user):
    return auth_headers(pam_user)


@pytest.fixture()
def other_pam_headers(other_pam_user):
    return auth_headers(other_pam_user)


@pytest.fixture()
def pdm_headers(pdm_user):
    return auth_headers(pdm_user)


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def templates():
    """Seed the default questionnaire templates (version 1 each)."""
    from onboarding_hub.services.template_seed import seed_default_templates
    count = seed_default_templates(created_by=PDM_EMAIL)
    assert count == 5
    return count


@pytest.fixture()
def partner(client, pam_headers):
    """Create and return a partner owned by the PAM user via the API."""
    res = client.post(
        "/api/v1/partners",
        json={
            "partnerName": "Acme Telecom",
            "pamOwner": PAM_EMAIL,
            "contractType": "PPA",
            "tier": "tier-1",
            "ccv": 60000000,
            "lrp": 500000000,
        },
        headers=pam_headers,
    )
    assert res.status_code == 201, res.get_json()
    return res.get_json()


# ── Payload builders ─────────────────────────────────────────────────────


def signature_payload(email=PAM_EMAIL, name="Pat Owner"):
    return {"type": "typed", "data": name, "signerName": name, "signerEmail": email}


def all_yes(template):
    """Sections answering every radio question of *template* with "Yes"."""
    sections = []
    for section in template["sections"]:
        fields = {
            f["id"]: "Yes"
            for f in template["fields"]
            if f["sectionId"] == section["id"] and f["type"] == "radio"
        }
        sections.append({"sectionId": section["id"], "fields": fields})
    return sections


def strategic_answers(tier="Tier 1", ccv=60000000, lrp=500000000):
    return {"partner-tier": tier, "ccv-amount": ccv, "country-lrp": lrp}
