"""
SQLAlchemy models for partner import configuration and audit history.

``ImportProfile`` describes how one partner's sheet maps onto clients and
orders. ``ImportRunLog`` is the write-once audit row created at the end of
every non-dry-run import.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db

SOURCE_TYPE_CSV = "csv"
SOURCE_TYPE_GSHEET = "gsheet"
SOURCE_TYPES = (SOURCE_TYPE_CSV, SOURCE_TYPE_GSHEET)


class ImportProfile(BaseModel):
    """Per-partner column, status and engineer mapping used by the importer."""

    __tablename__ = "import_profiles"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(200), nullable=False)
    partner_id: Mapped[int] = mapped_column(ForeignKey("partners.id"), nullable=False, index=True)
    source_type: Mapped[str] = mapped_column(db.String(20), nullable=False, default=SOURCE_TYPE_CSV)
    gsheet_id: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    gsheet_sheet_name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    column_mappings: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Canonical field name -> sheet column header.",
    )
    status_mappings: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Partner status -> internal order status.",
    )
    status_actions: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Partner status -> {jms_status, bucket, actions: {suppress_scheduling, suppression_reason}}.",
    )
    status_override_rules: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Partner status -> bool forcing the scheduling suppression flag.",
    )
    engineer_mapping_rules: Mapped[list | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="List of {partner_identifier, engineer_id | engineer_email}.",
    )
    job_duration_defaults: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Normalized job type key -> default duration in hours.",
    )
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)

    partner = relationship("Partner", back_populates="import_profiles")
    run_logs = relationship("ImportRunLog", back_populates="profile")

    __table_args__ = (
        UniqueConstraint("partner_id", "name", name="uq_import_profiles_partner_name"),
        CheckConstraint("source_type IN ('csv', 'gsheet')", name="ck_import_profiles_source_type"),
    )

    def __repr__(self) -> str:
        return f"<ImportProfile {self.id} partner={self.partner_id} name={self.name!r}>"


class ImportRunLog(BaseModel):
    """Append-only summary of one partner import run."""

    __tablename__ = "import_run_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    run_id: Mapped[str] = mapped_column(db.String(64), nullable=False, unique=True, index=True)
    partner_id: Mapped[int] = mapped_column(ForeignKey("partners.id"), nullable=False, index=True)
    profile_id: Mapped[int] = mapped_column(ForeignKey("import_profiles.id"), nullable=False, index=True)
    dry_run: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    total_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    processed_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    inserted_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    updated_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    duplicate_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    warning_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    warnings: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    errors: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    skipped_details: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    chunk_info: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)

    partner = relationship("Partner")
    profile = relationship("ImportProfile", back_populates="run_logs")
    created_by = relationship("User", foreign_keys=[created_by_user_id])

    __table_args__ = (Index("idx_import_run_logs_partner_created", "partner_id", "created_at"),)

    def __repr__(self) -> str:
        return f"<ImportRunLog {self.run_id} inserted={self.inserted_count} errors={self.error_count}>"
