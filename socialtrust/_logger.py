"""Shared structlog setup for workers and embedding services."""
import structlog

_configured = False


def configure_logging() -> None:
    """Apply the JSON processor chain once per process."""
    global _configured
    if _configured:
        return
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
    )
    _configured = True
