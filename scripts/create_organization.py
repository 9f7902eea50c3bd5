# scripts/create_organization.py

"""
Create an organization (tenant) and optionally add an existing user to it.
"""

import os
import re
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.exc import SQLAlchemyError

from app import app
from flask_app.models import Organization, User, UserOrganization, db, ensure_default_roles
from flask_app.models.role import DEFAULT_ROLE_GRANTS


def generate_slug(name):
    """Generate a URL-friendly slug from a name"""
    slug = name.lower()
    slug = re.sub(r"[_\s]+", "-", slug)
    slug = re.sub(r"[^a-z0-9\-]", "", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def _add_member(organization):
    email = input("Add a member by email (or press Enter to skip): ").strip()
    if not email:
        return
    user = User.find_by_email(email)
    if user is None:
        print(f"Error: No user with email {email}.")
        sys.exit(1)

    roles = ensure_default_roles()
    role_name = input(f"Role {sorted(DEFAULT_ROLE_GRANTS)} [ORG_ADMIN]: ").strip().upper() or "ORG_ADMIN"
    if role_name not in roles:
        print(f"Error: Unknown role {role_name}.")
        sys.exit(1)

    db.session.add(UserOrganization(user_id=user.id, organization_id=organization.id, role_id=roles[role_name].id))
    db.session.commit()
    print(f"   Member: {user.email} as {role_name}")


def create_organization():
    with app.app_context():
        name = input("Enter organization name: ").strip()
        if not name:
            print("Error: Organization name cannot be empty.")
            sys.exit(1)

        suggested_slug = generate_slug(name)
        slug = input(f'Enter slug (or press Enter to use "{suggested_slug}"): ').strip() or suggested_slug
        if not re.match(r"^[a-z0-9\-]+$", slug):
            print("Error: Slug can only contain lowercase letters, numbers, and hyphens.")
            sys.exit(1)

        if Organization.find_by_slug(slug):
            print(f'Error: An organization with slug "{slug}" already exists.')
            sys.exit(1)

        description = input("Enter description (optional): ").strip() or None
        org = Organization(name=name, slug=slug, description=description, is_active=True)
        try:
            org.save()
        except SQLAlchemyError as e:
            print(f"Error creating organization: {e}")
            sys.exit(1)

        print("Organization created successfully!")
        print(f"   Name: {org.name}")
        print(f"   Slug: {org.slug}")
        _add_member(org)


if __name__ == "__main__":
    create_organization()
