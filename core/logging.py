"""
core/logging.py -- Process-wide logging setup.

Both entry points (api/main.py and the main.py admin CLI) call
configure_logging() once; library modules only ever do
logging.getLogger("procureauth.<area>") and never configure handlers.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=DATE_FORMAT)
    logging.getLogger("procureauth").setLevel(level)


def redact_email(email: str) -> str:
    """Redact an email address for logging: "alice@example.com" -> "al***@example.com"."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"
