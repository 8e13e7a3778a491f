"""Logging helpers."""
import logging
import os

_NOISY_LOGGERS = ("httpx", "openai", "urllib3")


def configure_logging(service_name: str) -> None:
    """Configure process-wide logging for a service."""

    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format=f"%(asctime)s | {service_name} | %(levelname)s | %(name)s | %(message)s",
    )
    if level != "DEBUG":
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
