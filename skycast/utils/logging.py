"""Structlog setup for the cash-out services and scripts.

On top of the ISO timestamp and console renderer, the chain merges
contextvars so a monitor can bind user_id or bet_id once per task, and
stamps each event with its level.
"""

import structlog

_configured = False


def configure_logging() -> None:
    """Configure structlog with the project-standard processor chain.

    Safe to call multiple times; only the first call takes effect.
    """
    global _configured
    if _configured:
        return
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(),
        ]
    )
    _configured = True
