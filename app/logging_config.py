# =============================================================================
# app/logging_config.py - Root Logger Setup
# =============================================================================
# Every module logs through logging.getLogger(__name__); this sets the root
# handler once, at DEBUG when settings.DEBUG is on and INFO otherwise.
# =============================================================================

import logging

from app.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(debug: bool | None = None) -> None:
    """Configure the root logger. `debug` overrides settings.DEBUG."""
    debug = settings.DEBUG if debug is None else debug
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
    )
    # Third-party clients are chatty at DEBUG
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
