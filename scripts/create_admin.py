# scripts/create_admin.py

import os
import sys
from getpass import getpass

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.exc import SQLAlchemyError

from app import app
from flask_app.models import User


def create_admin():
    with app.app_context():
        username = input("Enter username: ").strip()
        email = input("Enter email: ").strip()

        if User.find_by_username(username):
            print("Error: Username already exists.")
            sys.exit(1)

        if User.find_by_email(email):
            print("Error: Email already exists.")
            sys.exit(1)

        password = getpass("Enter password: ")
        password2 = getpass("Confirm password: ")

        if password != password2:
            print("Error: Passwords do not match.")
            sys.exit(1)

        if not password:
            print("Error: Password cannot be empty.")
            sys.exit(1)

        admin_user = User(username=username, email=email, is_active=True, is_super_admin=True)
        admin_user.set_password(password)
        try:
            admin_user.save()
        except SQLAlchemyError as e:
            print(f"Error creating admin account: {e}")
            sys.exit(1)

        print("Super admin account created successfully!")
        print(f"   Username: {admin_user.username}")
        print(f"   Email: {admin_user.email}")
        print("\nNote: Super admins can reconcile every organization.")


if __name__ == "__main__":
    create_admin()
