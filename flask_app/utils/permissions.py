# flask_app/utils/permissions.py

from functools import wraps
from http import HTTPStatus

from flask import g, jsonify
from flask_login import current_user

from flask_app.models import Organization, UserOrganization


def get_user_organizations(user):
    """Get all organizations a user belongs to"""
    if not user or not user.is_authenticated:
        return []

    if user.is_super_admin:
        # Super admins can access all organizations
        return Organization.query.filter_by(is_active=True).all()

    user_orgs = UserOrganization.query.filter_by(user_id=user.id, is_active=True).all()
    return [uo.organization for uo in user_orgs if uo.organization.is_active]


def get_user_role_in_organization(user, organization):
    """Get the role a user has in a specific organization"""
    if not user or not user.is_authenticated or not organization:
        return None

    user_org = UserOrganization.query.filter_by(
        user_id=user.id,
        organization_id=organization.id,
        is_active=True,
    ).first()

    return user_org.role if user_org else None


def has_permission(user, permission_name, organization=None):
    """Check if user has a specific permission, optionally in a specific organization"""
    if not user or not user.is_authenticated:
        return False

    # Super admins have all permissions
    if user.is_super_admin:
        return True

    if organization:
        role = get_user_role_in_organization(user, organization)
        return bool(role and role.has_permission(permission_name))

    for org in get_user_organizations(user):
        role = get_user_role_in_organization(user, org)
        if role and role.has_permission(permission_name):
            return True
    return False


def require_organization_membership(user, organization):
    """Check if user is a member of the organization"""
    if not user or not user.is_authenticated or not organization:
        return False

    if user.is_super_admin:
        return True

    user_org = UserOrganization.query.filter_by(
        user_id=user.id,
        organization_id=organization.id,
        is_active=True,
    ).first()
    return user_org is not None


def _json_error(message, status):
    return jsonify({"error": message}), status


def permission_required(permission_name, org_context=True):
    """
    Decorator for JSON endpoints requiring a specific permission.

    Args:
        permission_name: Name of the permission to check
        org_context: If True, requires organization context and checks permission in that org.
                     If False, checks if user has permission in any organization.
    """

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return _json_error("Authentication required.", HTTPStatus.UNAUTHORIZED)

            if org_context:
                organization = get_current_organization()
                if not organization:
                    return _json_error("Organization context required.", HTTPStatus.BAD_REQUEST)
                if current_user.is_super_admin:
                    return f(*args, **kwargs)
                if not has_permission(current_user, permission_name, organization):
                    return _json_error(f"Missing {permission_name} permission.", HTTPStatus.FORBIDDEN)
            elif not has_permission(current_user, permission_name):
                return _json_error(f"Missing {permission_name} permission.", HTTPStatus.FORBIDDEN)

            return f(*args, **kwargs)

        return decorated_function

    return decorator


def get_current_organization():
    """
    Get the current organization from Flask request context.
    This is set by middleware from header, URL parameter or session.
    """
    return getattr(g, "current_organization", None)


def set_current_organization(organization):
    """Set the current organization in Flask request context"""
    g.current_organization = organization
