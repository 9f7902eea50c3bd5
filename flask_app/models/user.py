# flask_app/models/user.py

from flask import current_app
from flask_login import UserMixin
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from .base import BaseModel, db


class User(UserMixin, BaseModel):
    """Application user; tenant membership lives on UserOrganization."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    first_name = db.Column(db.String(64), nullable=True)
    last_name = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_super_admin = db.Column(db.Boolean, default=False, nullable=False)
    last_login = db.Column(db.DateTime(timezone=True), nullable=True)

    user_organizations = db.relationship("UserOrganization", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User {self.username}>"

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def display_name(self):
        full = " ".join(part for part in (self.first_name, self.last_name) if part)
        return full or self.username

    @staticmethod
    def find_by_username(username):
        """Find user by username with error handling"""
        try:
            return User.query.filter_by(username=username).first()
        except SQLAlchemyError as e:
            current_app.logger.error(f"Database error finding user by username {username}: {str(e)}")
            return None

    @staticmethod
    def find_by_email(email):
        """Find user by email with error handling"""
        try:
            return User.query.filter_by(email=email).first()
        except SQLAlchemyError as e:
            current_app.logger.error(f"Database error finding user by email {email}: {str(e)}")
            return None
