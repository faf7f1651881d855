"""
Partner import feature package.

Registers the importer blueprint, CLI group and Celery worker when
``IMPORTER_ENABLED`` is true, and records its state on
``app.extensions['importer']``.
"""

from __future__ import annotations

from typing import Any, Mapping

from flask import Flask

from installops.utils.importer import is_importer_enabled

from .adapters import check_sheets_readiness
from .celery_app import ensure_celery_app, get_celery_app
from .cli import get_disabled_importer_group, importer_cli
from .pipeline import ImportRunService, RunFilters, run_partner_import
from .views import importer_blueprint

IMPORTER_EXTENSION_KEY = "importer"

__all__ = [
    "init_importer",
    "IMPORTER_EXTENSION_KEY",
    "get_celery_app",
    "get_sheets_readiness",
    "refresh_sheets_readiness",
    "ImportRunService",
    "RunFilters",
    "run_partner_import",
]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        IMPORTER_EXTENSION_KEY,
        {
            "enabled": False,
            "worker_enabled": False,
            "celery_app": None,
            "sheets_readiness": {},
        },
    )


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the appropriate CLI group based on flag state."""
    # Avoid duplicate registrations when running tests
    command_name = importer_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(importer_cli)
    else:
        app.cli.add_command(get_disabled_importer_group())


def init_importer(app: Flask) -> None:
    """
    Conditionally mount the importer blueprint, CLI and worker based on configuration.
    """
    enabled = is_importer_enabled(app)
    state = _ensure_extension_state(app)
    state.update(
        {
            "enabled": enabled,
            "worker_enabled": bool(app.config.get("IMPORTER_WORKER_ENABLED", False)),
        }
    )

    if not enabled:
        _set_cli(app, enabled=False)
        app.logger.info("Importer disabled via IMPORTER_ENABLED flag; skipping registration.")
        return

    ensure_celery_app(app, state)

    with app.app_context():
        readiness = check_sheets_readiness()
    state["sheets_readiness"] = readiness.as_dict()
    if readiness.status != "ready":
        app.logger.warning(
            "Google Sheets source not ready (status=%s). %s",
            readiness.status,
            "; ".join(readiness.messages()) or "No additional context provided.",
            extra={"importer_sheets_status": readiness.status},
        )

    if importer_blueprint.name not in app.blueprints and not getattr(app, "_got_first_request", False):
        app.register_blueprint(importer_blueprint)
    elif importer_blueprint.name not in app.blueprints:
        app.logger.warning(
            "Importer blueprint registration skipped because the app has already handled its first request."
        )
    _set_cli(app, enabled=True)
    app.logger.info("Importer enabled (batch size %s).", app.config.get("IMPORTER_BATCH_SIZE"))


def get_sheets_readiness(app: Flask) -> Mapping[str, Any]:
    """Return the cached Google Sheets readiness payload."""
    state = _ensure_extension_state(app)
    return dict(state.get("sheets_readiness", {}))


def refresh_sheets_readiness(app: Flask) -> Mapping[str, Any]:
    """Recompute Google Sheets readiness and cache it on the extension state."""
    state = _ensure_extension_state(app)
    with app.app_context():
        state["sheets_readiness"] = check_sheets_readiness().as_dict()
    return dict(state["sheets_readiness"])
