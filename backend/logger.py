"""
Dashboard - Logging Configuration

All modules log through ``logging.getLogger(__name__)``; this module only
installs the handlers once at application start.

Usage:
    from backend.logger import configure_logging
    configure_logging(settings.LOG_LEVEL)

Security: never pass passwords, TOTP secrets/codes or bearer tokens to a logger.
"""

import logging
import logging.config


_configured = False


def configure_logging(level: str = "INFO") -> None:
    """
    Apply the console logging configuration.

    Safe to call multiple times; only the first call installs handlers,
    later calls just adjust the level.
    """
    global _configured

    if _configured:
        logging.getLogger("backend").setLevel(level.upper())
        return

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
        },
        "loggers": {
            "backend": {
                "handlers": ["console"],
                "level": level.upper(),
                "propagate": False,
            },
        },
    })
    _configured = True
