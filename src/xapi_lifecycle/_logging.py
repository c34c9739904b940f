"""Logging for xapi-lifecycle.

The library only attaches a NullHandler to the ``xapi_lifecycle`` logger;
``XAPI_LIFECYCLE_LOG_LEVEL`` sets its level. ``configure_logging()`` is for
the ``xlc`` entry point.

Modules log a short message and pass the details (VM / disk references,
XAPI error codes, the swallowed error of a best-effort step) through
``extra=``. The CLI formatter appends those fields to the line:

    WARNING [2026-10-19 10:02:54] xapi_lifecycle.best_effort - reclaim disk failed (ignored) [vdi=OpaqueRef:3f.. error=SR_BACKEND_FAILURE_46 error_type=XapiError]

Records are handed to a QueueListener thread that writes through
click.echo(err=True), so a slow terminal never stalls the event loop while
remote calls are in flight. When the queue is full, records are dropped.
"""

import contextlib
import logging
import logging.handlers
import os
import queue
from typing import Any

import click

LIBRARY_LOGGER_NAME: str = "xapi_lifecycle"

logging.getLogger(LIBRARY_LOGGER_NAME).addHandler(logging.NullHandler())

# e.g. XAPI_LIFECYCLE_LOG_LEVEL=DEBUG
_env_level = logging.getLevelNamesMapping().get(os.environ.get("XAPI_LIFECYCLE_LOG_LEVEL", "").strip().upper())
if _env_level:
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(_env_level)

_FMT = "%(levelname)s [%(asctime)s] %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_QUEUE_CAPACITY = 1024

# Attributes every LogRecord carries; anything else came from extra=
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

_LEVEL_COLORS = {
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "red",
}


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Fields passed to the log call through ``extra=``."""
    return {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS and not key.startswith("_")}


class ContextFormatter(logging.Formatter):
    """Standard line followed by the record's structured context as ``key=value`` pairs."""

    def __init__(self) -> None:
        super().__init__(fmt=_FMT, datefmt=_DATEFMT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        fields = " ".join(f"{key}={value}" for key, value in context.items())
        # Keep the traceback, if any, after the context
        head, sep, tail = line.partition("\n")
        return f"{head} [{fields}]{sep}{tail}"


class _ClickHandler(logging.Handler):
    """Writes formatted records to stderr, colored by level.

    Runs on the QueueListener thread. click.echo() strips the colors when
    stderr is not a TTY.
    """

    def __init__(self) -> None:
        super().__init__()
        self.setFormatter(ContextFormatter())

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(click.style(self.format(record), fg=_LEVEL_COLORS.get(record.levelno)), err=True)
        except BlockingIOError:
            pass  # stderr saturated, drop
        except Exception:  # noqa: BLE001
            self.handleError(record)


class _NonBlockingHandler(logging.handlers.QueueHandler):
    """QueueHandler that drops records instead of blocking when the queue is full."""

    def __init__(self) -> None:
        q: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=_QUEUE_CAPACITY)
        super().__init__(q)
        self._listener = logging.handlers.QueueListener(q, _ClickHandler(), respect_handler_level=False)
        self._listener.start()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Same process: the listener formats the original record, extras included
        return record

    def enqueue(self, record: logging.LogRecord) -> None:
        with contextlib.suppress(queue.Full):
            self.queue.put_nowait(record)

    def close(self) -> None:
        self._listener.stop()
        super().close()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def configure_logging(
    *,
    level: int | str | None = None,
    quiet: bool = False,
) -> None:
    """Send library logs to stderr for the CLI.

    Installs the queue handler once, then sets the level.

    Args:
        level: Log level (e.g. logging.DEBUG, "WARNING"). Overrides the env var.
        quiet: Only log errors. Takes precedence over level.
    """
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)

    if not any(isinstance(h, _NonBlockingHandler) for h in lib_logger.handlers):
        lib_logger.addHandler(_NonBlockingHandler())

    if quiet:
        lib_logger.setLevel(logging.ERROR)
    elif level is not None:
        lib_logger.setLevel(level)
