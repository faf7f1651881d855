# installops/models/user.py

import secrets

from flask import current_app
from flask_login import UserMixin
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from .base import BaseModel, db


class User(UserMixin, BaseModel):
    """Back-office operator allowed to call the importer API."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(200), nullable=True)
    api_token_hash = db.Column(db.String(255), nullable=True)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<User {self.email}>"

    def issue_api_token(self):
        """
        Generate a new API token, store its hash, and return the plain token.

        The token embeds the user id (``<id>.<secret>``) so the request loader
        can fetch the user before verifying the hash. The caller must commit.
        """
        if self.id is None:
            db.session.add(self)
            db.session.flush()
        secret = secrets.token_urlsafe(32)
        self.api_token_hash = generate_password_hash(secret)
        return f"{self.id}.{secret}"

    def check_api_token(self, secret):
        if not self.api_token_hash or not secret:
            return False
        return check_password_hash(self.api_token_hash, secret)

    @staticmethod
    def find_by_api_token(token):
        """Resolve a ``<id>.<secret>`` token to an active user, or None."""
        if not token or "." not in token:
            return None
        raw_id, secret = token.split(".", 1)
        try:
            user_id = int(raw_id)
        except ValueError:
            return None
        try:
            user = db.session.get(User, user_id)
        except SQLAlchemyError as e:
            current_app.logger.error(f"Database error loading user {user_id} for API token: {str(e)}")
            return None
        if user is None or not user.is_active or not user.check_api_token(secret):
            return None
        return user
