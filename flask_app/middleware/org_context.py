# flask_app/middleware/org_context.py

from flask import current_app, g, request, session
from flask_login import current_user

from flask_app.models import Organization
from flask_app.utils.permissions import get_user_organizations, set_current_organization

ORGANIZATION_HEADER = "X-Organization"


def _lookup(org_id, org_slug):
    organization = None
    if org_id:
        try:
            organization = Organization.find_by_id(int(org_id))
        except (ValueError, TypeError):
            current_app.logger.warning(f"Invalid organization ID: {org_id}")

    if not organization and org_slug:
        organization = Organization.find_by_slug(org_slug)
    return organization


def _remember(organization):
    set_current_organization(organization)
    session["current_organization_id"] = organization.id
    session["current_organization_slug"] = organization.slug


def init_org_context_middleware(app):
    """Initialize organization context middleware"""

    @app.before_request
    def set_organization_context():
        """Set the current organization from header, query parameter or session"""
        g.current_organization = None

        if request.endpoint in ("static", "login", "logout", "health_check", "metrics"):
            return

        org_id = request.args.get("org_id")
        org_slug = request.args.get("org_slug")

        # API clients name the tenant in a header, by id or slug
        header_value = request.headers.get(ORGANIZATION_HEADER, "").strip()
        if not org_id and not org_slug and header_value:
            if header_value.isdigit():
                org_id = header_value
            else:
                org_slug = header_value

        if not org_id and not org_slug:
            org_id = session.get("current_organization_id")
            org_slug = session.get("current_organization_slug")

        organization = _lookup(org_id, org_slug)

        if organization:
            if not organization.is_active:
                current_app.logger.warning(f"Attempted access to inactive organization: {organization.id}")
                organization = None
            else:
                _remember(organization)

        # A user with exactly one organization gets it selected automatically
        if not organization and current_user.is_authenticated:
            user_orgs = get_user_organizations(current_user)
            if len(user_orgs) == 1:
                _remember(user_orgs[0])
