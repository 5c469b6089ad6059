import logging
import logging.config
from pathlib import Path
from typing import Any, Dict, Optional

from app.config.loader import get_logging_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _rotating(path: Path, level: str, settings: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "formatter": "default",
        "filename": str(path),
        "maxBytes": settings["max_bytes"],
        "backupCount": settings["backup_count"],
        "level": level,
        "encoding": "utf8",
    }


def build_logging_config(settings: Dict[str, Any]) -> Dict[str, Any]:
    """
    dictConfig mapping for MeetGate.

    Everything lands in app.log and errors also in error.log. The "audit"
    logger (join decisions, meeting and room transitions) also writes audit.log.
    """
    log_dir = Path(settings["log_dir"])
    level = settings["level"]
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": LOG_FORMAT}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "level": level,
            },
            "file_app": _rotating(log_dir / "app.log", "INFO", settings),
            "file_error": _rotating(log_dir / "error.log", "ERROR", settings),
            "file_audit": _rotating(log_dir / "audit.log", "INFO", settings),
        },
        "loggers": {
            "": {
                "handlers": ["console", "file_app", "file_error"],
                "level": level,
            },
            "app": {
                "handlers": ["console", "file_app", "file_error"],
                "level": level,
                "propagate": False,
            },
            "audit": {
                "handlers": ["console", "file_audit", "file_app"],
                "level": "INFO",
                "propagate": False,
            },
            "auth_module": {
                "handlers": ["console", "file_app", "file_error"],
                "level": level,
                "propagate": False,
            },
            "database": {
                "handlers": ["console", "file_app", "file_error"],
                "level": level,
                "propagate": False,
            },
        },
    }


def setup_logging(settings: Optional[Dict[str, Any]] = None) -> None:
    """Configure logging; logs go under MEETGATE_LOG_DIR (default 'logs')."""
    settings = settings or get_logging_settings()
    Path(settings["log_dir"]).mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_logging_config(settings))
    logging.getLogger("app").info("Logging configured in %s", settings["log_dir"])
