# installops/models/order.py

from sqlalchemy import ForeignKey, Index, UniqueConstraint

from .base import BaseModel, db

DEFAULT_ORDER_STATUS = "awaiting_install_booking"


class Order(BaseModel):
    """Installation job. Partner jobs are unique per (partner, external id)."""

    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, ForeignKey("clients.id"), nullable=False, index=True)
    partner_id = db.Column(db.Integer, ForeignKey("partners.id"), nullable=True, index=True)
    partner_external_id = db.Column(db.String(255), nullable=True)
    is_partner_job = db.Column(db.Boolean, default=False, nullable=False)

    status = db.Column(db.String(64), nullable=False, default=DEFAULT_ORDER_STATUS, index=True)
    partner_status = db.Column(db.String(255), nullable=True)
    scheduled_install_date = db.Column(db.DateTime(timezone=True), nullable=True)
    engineer_id = db.Column(db.Integer, ForeignKey("engineers.id"), nullable=True, index=True)
    total_amount = db.Column(db.Numeric(12, 2), nullable=True)
    job_type = db.Column(db.String(100), nullable=True)
    estimated_duration_hours = db.Column(db.Numeric(5, 2), nullable=True)
    scheduling_suppressed = db.Column(db.Boolean, default=False, nullable=False)
    scheduling_suppression_reason = db.Column(db.String(255), nullable=True)

    sub_partner = db.Column(db.String(200), nullable=True)
    partner_external_url = db.Column(db.String(1000), nullable=True)
    job_address = db.Column(db.Text, nullable=True)
    postcode = db.Column(db.String(16), nullable=True)
    partner_metadata = db.Column(db.JSON, nullable=True)

    client = db.relationship("Client", back_populates="orders")
    partner = db.relationship("Partner")
    engineer = db.relationship("Engineer")

    __table_args__ = (
        UniqueConstraint("partner_id", "partner_external_id", name="uq_orders_partner_external_id"),
        Index("idx_orders_partner_status", "partner_id", "status"),
    )

    def __repr__(self):
        return f"<Order {self.id} partner={self.partner_id} ext={self.partner_external_id}>"
