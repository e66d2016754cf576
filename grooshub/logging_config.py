# =============================================================================
# Logging Configuration
# =============================================================================
#
# Every module logs through `logging.getLogger(__name__)`. This module only
# configures the root logger once, at application or worker start-up.
# =============================================================================

from __future__ import annotations

import logging
import sys

_configured = False

# Third-party loggers that are noisy at INFO/DEBUG
_QUIET_LOGGERS = (
    "httpx",
    "httpcore",
    "openai",
    "anthropic",
    "sqlalchemy.engine",
    "docling",
)


def setup_logging(level: str = "INFO") -> None:
    """
    Configure the root logger with a single stdout handler.

    Safe to call more than once; only the first call installs the handler.
    """
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True
