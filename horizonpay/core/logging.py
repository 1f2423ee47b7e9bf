"""Logging configuration for the application."""

import logging
import sys

SENSITIVE_FIELDS = (
    "account_number",
    "bank_account",
    "phone",
    "email",
    "upi_id",
    "ifsc_code",
)


def setup_logging(level: str = "INFO") -> None:
    """Configure application logging.

    Args:
        level: The logging level to use.
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def mask_value(value: str) -> str:
    """Keep the first and last three characters of long values."""
    if len(value) > 6:
        return f"{value[:3]}***{value[-3:]}"
    return "***"


def sanitize_for_log(data: dict | None) -> dict | None:
    """Return a copy of *data* with sensitive fields masked."""
    if not data:
        return data
    sanitized = dict(data)
    for field in SENSITIVE_FIELDS:
        if sanitized.get(field):
            sanitized[field] = mask_value(str(sanitized[field]))
    return sanitized
