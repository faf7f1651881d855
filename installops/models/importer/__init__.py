"""
Importer-specific SQLAlchemy models.

These models back the partner import: per-partner import profiles and the
write-once run audit log.
"""

from .schema import SOURCE_TYPE_CSV, SOURCE_TYPE_GSHEET, SOURCE_TYPES, ImportProfile, ImportRunLog

__all__ = [
    "ImportProfile",
    "ImportRunLog",
    "SOURCE_TYPE_CSV",
    "SOURCE_TYPE_GSHEET",
    "SOURCE_TYPES",
]
