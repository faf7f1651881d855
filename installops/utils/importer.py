"""
Utility helpers for importer feature flag and sizing checks.
"""

from __future__ import annotations

from flask import current_app


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_importer_enabled(app=None) -> bool:
    """Return True when the importer feature flag is enabled."""
    config = _get_config(app)
    return bool(config.get("IMPORTER_ENABLED", False))


def get_batch_size(app=None) -> int:
    """Return the bulk upsert batch size (rows per transaction)."""
    config = _get_config(app)
    return max(1, int(config.get("IMPORTER_BATCH_SIZE", 500)))


def get_chunk_limits(app=None) -> tuple[int, int]:
    """Return ``(default_chunk_size, max_rows_limit)`` for chunked runs."""
    config = _get_config(app)
    limit = max(1, int(config.get("IMPORTER_MAX_ROWS_LIMIT", 5000)))
    default = min(max(1, int(config.get("IMPORTER_CHUNK_SIZE", 1000))), limit)
    return default, limit
