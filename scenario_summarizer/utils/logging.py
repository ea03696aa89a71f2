"""Logging configuration for the scenario summarizer."""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the package; safe to call more than once."""
    level = logging.DEBUG if verbose else logging.INFO

    root_logger = logging.getLogger("scenario_summarizer")
    root_logger.setLevel(level)

    for existing in root_logger.handlers:
        if getattr(existing, "_scenario_summarizer", False):
            existing.setLevel(level)
            break
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
        handler._scenario_summarizer = True  # type: ignore[attr-defined]
        root_logger.addHandler(handler)

    # Quiet noisy libraries
    for name in ("httpx", "openai", "anthropic", "ollama"):
        logging.getLogger(name).setLevel(logging.WARNING)
