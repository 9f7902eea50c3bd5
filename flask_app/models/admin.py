# flask_app/models/admin.py

import json

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .base import BaseModel, db


class AdminLog(BaseModel):
    """Audit trail for administrative reconciliation actions."""

    __tablename__ = "admin_logs"

    id = db.Column(db.Integer, primary_key=True)
    admin_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)
    action = db.Column(db.String(100), nullable=False, index=True)
    details = db.Column(db.Text, nullable=True)  # JSON string
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)

    admin_user = db.relationship("User", foreign_keys=[admin_user_id])

    def __repr__(self):
        return f"<AdminLog {self.action} by user {self.admin_user_id}>"

    @staticmethod
    def log_action(
        admin_user_id,
        action,
        organization_id=None,
        details=None,
        ip_address=None,
        user_agent=None,
    ):
        """Persist an audit entry; ``details`` may be a mapping or a string."""
        if details is not None and not isinstance(details, str):
            details = json.dumps(details, default=str)
        log = AdminLog(
            admin_user_id=admin_user_id,
            organization_id=organization_id,
            action=action,
            details=details,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        try:
            db.session.add(log)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Failed to record admin action {action}: {str(e)}")
            return None
        return log
