# flask_app/routes/auth.py

"""
Session login for API clients; accepts a form post or a JSON body.
"""

from datetime import datetime, timezone

from flask import current_app, jsonify, request, session
from flask_login import current_user, login_required, login_user, logout_user
from sqlalchemy.exc import SQLAlchemyError

from flask_app.models import User, db
from flask_app.utils.permissions import get_user_organizations


def _credentials():
    if request.is_json:
        payload = request.get_json(silent=True) or {}
        return payload.get("username", ""), payload.get("password", "")
    return request.form.get("username", ""), request.form.get("password", "")


def register_auth_routes(app):
    """Register authentication routes"""

    @app.route("/login", methods=["POST"])
    def login():
        username, password = _credentials()
        username = (username or "").strip()
        if not username or not password:
            return jsonify({"error": "Username and password are required."}), 400

        user = User.find_by_username(username)
        if user is None or not user.check_password(password):
            current_app.logger.warning(f"Failed login attempt for username: {username}")
            return jsonify({"error": "Invalid username or password."}), 401
        if not user.is_active:
            current_app.logger.warning(f"Login attempt for inactive user: {username}")
            return jsonify({"error": "Account is inactive."}), 403

        login_user(user)
        user.last_login = datetime.now(timezone.utc)
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Failed to record last login for {username}: {str(e)}")

        current_app.logger.info(f"User {username} logged in")
        return jsonify(
            {
                "id": user.id,
                "username": user.username,
                "display_name": user.display_name,
                "organizations": [
                    {"id": org.id, "slug": org.slug, "name": org.name} for org in get_user_organizations(user)
                ],
            }
        )

    @app.route("/logout", methods=["POST"])
    @login_required
    def logout():
        username = current_user.username
        logout_user()
        session.pop("current_organization_id", None)
        session.pop("current_organization_slug", None)
        current_app.logger.info(f"User {username} logged out")
        return jsonify({"status": "logged_out"})
