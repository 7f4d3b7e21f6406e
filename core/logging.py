"""
Logging configuration

Every record carries a ``run_id`` field. Inside a migration task it is the id
of the run being executed; everywhere else it is "-".
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional
import logging
import sys
from core.config import settings

_current_run_id: ContextVar[Optional[str]] = ContextVar("migration_run_id", default=None)

NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "apscheduler")


class RunContextFilter(logging.Filter):
    """Attach the active run id to each record"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = _current_run_id.get() or "-"
        return True


def current_run_id() -> Optional[str]:
    return _current_run_id.get()


@contextmanager
def run_context(run_id: str) -> Iterator[None]:
    """Tag every log record emitted in this block (and tasks it spawns) with run_id."""
    token = _current_run_id.set(run_id)
    try:
        yield
    finally:
        _current_run_id.reset(token)


def setup_logging(level: Optional[str] = None):
    """Configure application logging"""

    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RunContextFilter())

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(run_id)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[handler],
    )

    # Driver, pool and scheduler chatter stays at WARNING unless debugging
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING if log_level > logging.DEBUG else logging.INFO)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at {logging.getLevelName(log_level)} level")
