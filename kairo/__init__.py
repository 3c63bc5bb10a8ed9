"""Kairo: agent routing with relevance-scored interaction memory."""

import logging
import os
import sys

__version__ = "0.1.0"

# Configure logging to stderr (keep stdout clean for piping)
_log_level = os.environ.get("KAIRO_LOG_LEVEL", "WARNING").upper()
logging.basicConfig(
    level=getattr(logging, _log_level, logging.WARNING),
    format="%(levelname)s: %(name)s: %(message)s",
    stream=sys.stderr,
)
