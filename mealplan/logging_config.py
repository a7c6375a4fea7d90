"""
Logging setup for the planner service.

`mealplan.main` calls `configure_logging(config.LOG_LEVEL)` on import, so
the level follows the MEALPLAN_LOG_LEVEL environment variable. Modules log
through `logging.getLogger(__name__)` and pass recipe ids, week dates and
counts in `extra={...}` instead of formatting them into the message.
"""

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Send every record to stdout with one timestamped line per record."""
    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    datefmt = "%Y-%m-%dT%H:%M:%S"

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    # Replace rather than stack handlers when called twice
    root.handlers = [handler]

    # Request lines and limiter chatter only at WARNING and above
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    logging.getLogger("flask_limiter").setLevel(logging.WARNING)
