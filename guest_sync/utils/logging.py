"""
Logging setup for guest_sync.

All modules log through children of the ``guest_sync`` logger. The CLI
calls :func:`setup_logging` once per invocation, which attaches a console
handler on stderr and a per-day log file. Profile resolution and invitation
run in worker threads, so the file format records the thread name.
"""

import logging
import os
import sys
from datetime import date
from pathlib import Path
from typing import Optional, TextIO

from guest_sync.utils.paths import resolve_config_dir

ROOT_LOGGER_NAME = "guest_sync"

CONSOLE_FORMAT = "%(levelname)s: %(message)s"

# Used for the log file and for the console with --verbose
VERBOSE_FORMAT = (
    "%(asctime)s %(levelname)-8s %(name)s [%(threadName)s] "
    "(%(filename)s:%(lineno)d) %(message)s"
)

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ENV_LOG_LEVEL = "GUEST_SYNC_LOG_LEVEL"
ENV_DEBUG = "GUEST_SYNC_DEBUG"
ENV_LOG_FILE = "GUEST_SYNC_LOG_FILE"

LOG_FILE_PREFIX = "guest_sync_"

_TRUTHY = {"1", "true", "yes", "on"}
_FILE_LOGGING_OFF = {"none", "disabled", "off"}


class ColoredFormatter(logging.Formatter):
    """
    Formatter that highlights the level name with ANSI colors.

    Colors are dropped when the target stream is not a terminal, when
    NO_COLOR is set (https://no-color.org/) or when TERM is "dumb".
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        use_colors: bool = True,
        stream: Optional[TextIO] = None,
    ):
        super().__init__(fmt, datefmt)
        target = stream if stream is not None else sys.stderr
        self.use_colors = use_colors and _stream_is_color_terminal(target)

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno)
        if not self.use_colors or color is None:
            return super().format(record)

        # Other handlers share the record, so color a copy
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


def _stream_is_color_terminal(stream: TextIO) -> bool:
    isatty = getattr(stream, "isatty", None)
    if isatty is None or not isatty():
        return False
    if os.environ.get("NO_COLOR"):
        return False
    return os.environ.get("TERM", "") != "dumb"


def get_log_level_from_env() -> int:
    """
    Read the log level from GUEST_SYNC_DEBUG and GUEST_SYNC_LOG_LEVEL.

    A truthy GUEST_SYNC_DEBUG forces DEBUG. Unknown level names fall back
    to INFO.
    """
    if os.environ.get(ENV_DEBUG, "").strip().lower() in _TRUTHY:
        return logging.DEBUG

    name = os.environ.get(ENV_LOG_LEVEL, "").strip().upper()
    if name == "WARN":
        name = "WARNING"
    level = logging.getLevelName(name) if name else logging.INFO
    return level if isinstance(level, int) else logging.INFO


def daily_log_filename(day: Optional[date] = None) -> str:
    """Return the log file name for ``day`` (today by default)."""
    day = day or date.today()
    return f"{LOG_FILE_PREFIX}{day:%Y%m%d}.log"


def get_log_file_path() -> Optional[Path]:
    """
    Return the log file to use when no directory was passed explicitly.

    GUEST_SYNC_LOG_FILE names a file directly, or turns file logging off
    with "none", "disabled" or "off". Otherwise the file goes under
    ``<config dir>/logs``.
    """
    override = os.environ.get(ENV_LOG_FILE, "").strip()
    if override.lower() in _FILE_LOGGING_OFF:
        return None
    if override:
        return Path(override).expanduser()
    return resolve_config_dir() / "logs" / daily_log_filename()


def _attach_file_handler(logger: logging.Logger, path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError as e:
        logger.warning(f"File logging disabled, cannot open {path}: {e}")
        return

    # The file keeps the full trail even when the console is quieter
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(VERBOSE_FORMAT, DATE_FORMAT))
    logger.addHandler(handler)
    logger.debug(f"Writing log file {path}")


def setup_logging(
    level: Optional[int] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    log_file: Optional[Path] = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure the ``guest_sync`` logger and return it.

    Calling it again replaces the handlers from the previous call.

    Args:
        level: Console level. Taken from the environment when None.
        verbose: Force DEBUG and show timestamps and source locations.
        log_dir: Directory for the daily log file.
        log_file: Exact log file path; wins over ``log_dir``.
        enable_file_logging: Set to False for console output only.
        use_colors: Color level names on a capable terminal.
    """
    if verbose:
        level = logging.DEBUG
    elif level is None:
        level = get_log_level_from_env()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(level)
    logger.propagate = False

    console_format = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(
        ColoredFormatter(console_format, DATE_FORMAT, stream=sys.stderr)
        if use_colors
        else logging.Formatter(console_format, DATE_FORMAT)
    )
    logger.addHandler(console)

    if not enable_file_logging:
        return logger

    if log_file is not None:
        path: Optional[Path] = Path(log_file)
    elif log_dir is not None:
        path = Path(log_dir) / daily_log_filename()
    else:
        path = get_log_file_path()

    if path is not None:
        # A file handler runs at DEBUG, so let records through to it
        logger.setLevel(logging.DEBUG)
        _attach_file_handler(logger, path)

    return logger


def cleanup_old_logs(log_dir: Path, keep_count: int = 10) -> int:
    """
    Delete all but the ``keep_count`` newest daily log files in ``log_dir``.

    A ``keep_count`` of 0 or less keeps everything. Returns how many files
    were removed.
    """
    if keep_count <= 0 or not log_dir.is_dir():
        return 0

    logs = sorted(
        log_dir.glob(f"{LOG_FILE_PREFIX}*.log"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )

    removed = 0
    for stale in logs[keep_count:]:
        try:
            stale.unlink()
        except OSError as e:
            get_logger(__name__).debug(f"Could not remove old log {stale}: {e}")
            continue
        removed += 1
    return removed


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the ``guest_sync`` hierarchy for ``name``."""
    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


__all__ = [
    "setup_logging",
    "get_logger",
    "cleanup_old_logs",
    "ColoredFormatter",
    "get_log_level_from_env",
    "get_log_file_path",
    "daily_log_filename",
    "CONSOLE_FORMAT",
    "VERBOSE_FORMAT",
    "DATE_FORMAT",
    "LOG_FILE_PREFIX",
]
