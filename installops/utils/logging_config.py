# installops/utils/logging_config.py
"""
Structured logging configuration for the Flask application.

Call ``setup_logging(app)`` once the monitoring config has been loaded. It is
safe to call again (tests do) because handlers installed by a previous call
are replaced rather than duplicated.
"""

import json
import logging
import logging.handlers
import os
from datetime import datetime, timezone

# LogRecord attributes that are not user-supplied ``extra`` fields.
_RESERVED_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

_HANDLER_MARKER = "_installops_handler"


class JSONFormatter(logging.Formatter):
    """Structured JSON log lines for machine parsing."""

    def format(self, record):
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        # Merge extra fields (importer_run_id, importer_profile_id, ...)
        for key, value in vars(record).items():
            if key in _RESERVED_RECORD_ATTRS or key.startswith("_"):
                continue
            entry[key] = value
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Readable single-line format for development consoles."""

    def __init__(self):
        super().__init__("%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def _build_formatter(log_format):
    if str(log_format).lower() == "json":
        return JSONFormatter()
    return TextFormatter()


def _mark(handler):
    setattr(handler, _HANDLER_MARKER, True)
    return handler


def setup_logging(app):
    """
    Configure the Flask app logger from LOG_* settings.

    Console and rotating-file handlers are toggled independently through
    ``ENABLE_CONSOLE_LOGGING`` and ``ENABLE_FILE_LOGGING``.
    """
    config = app.config
    level_name = str(config.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    formatter = _build_formatter(config.get("LOG_FORMAT", "text"))

    targets = [app.logger, logging.getLogger("installops")]
    for logger in targets:
        for handler in list(logger.handlers):
            if getattr(handler, _HANDLER_MARKER, False):
                logger.removeHandler(handler)
                handler.close()
        logger.setLevel(level)

    handlers = []
    if config.get("ENABLE_CONSOLE_LOGGING", True):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        handlers.append(_mark(console))

    if config.get("ENABLE_FILE_LOGGING", False):
        log_dir = config.get("LOG_DIR", "logs")
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                os.path.join(log_dir, "installops.log"),
                maxBytes=int(config.get("LOG_FILE_MAX_BYTES", 10485760)),
                backupCount=int(config.get("LOG_FILE_BACKUP_COUNT", 10)),
            )
        except OSError as exc:
            app.logger.warning("File logging disabled; could not open log directory %s: %s", log_dir, exc)
        else:
            file_handler.setFormatter(JSONFormatter())
            handlers.append(_mark(file_handler))

    for logger in targets:
        for handler in handlers:
            logger.addHandler(handler)

    # Quiet noisy libs
    for name in ("urllib3", "werkzeug", "celery.worker.strategy"):
        logging.getLogger(name).setLevel(logging.WARNING)
    if not config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    app.logger.debug("Logging initialized", extra={"log_level": level_name})
