# scripts/init_database.py

"""
Database initialization script.
Creates all tables and the default reconciliation roles:
- ORG_ADMIN (view_reconciliation, manage_reconciliation)
- VIEWER (view_reconciliation)
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import app
from flask_app.models import db, ensure_default_roles


def init_database():
    """Initialize database with all default data"""
    with app.app_context():
        print("Creating database tables...")
        db.create_all()
        print("Database tables created (platform entities, vista_* staging tables, import batches)")

        print("Creating default roles and permissions...")
        roles = ensure_default_roles()
        for role_name, role in roles.items():
            granted = ", ".join(sorted(rp.permission.name for rp in role.permissions))
            print(f"  - {role_name}: {role.display_name} ({granted})")

        print("\nDatabase initialization complete!")
        print("\nNext steps:")
        print("  1. Create a super admin user: python scripts/create_admin.py")
        print("  2. Create an organization and its members: python scripts/create_organization.py")
        print("  3. Import a Vista export: flask vista import <file.xlsx> --tenant <slug>")


if __name__ == "__main__":
    init_database()
