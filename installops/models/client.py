# installops/models/client.py

from sqlalchemy import ForeignKey
from sqlalchemy.orm import validates

from .base import BaseModel, db


class Client(BaseModel):
    """End customer, unique by normalized email."""

    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(200), nullable=False, default="Unknown")
    phone = db.Column(db.String(20), nullable=True)
    address = db.Column(db.Text, nullable=True)
    postcode = db.Column(db.String(16), nullable=True)
    partner_id = db.Column(db.Integer, ForeignKey("partners.id"), nullable=True, index=True)

    orders = db.relationship("Order", back_populates="client")

    def __repr__(self):
        return f"<Client {self.email}>"

    @validates("email")
    def _normalize_email(self, key, value):
        return value.strip().lower() if isinstance(value, str) else value
