"""Logging setup for the catalog access layer.

Two loggers are handed to every service:

* ``console_logger``: user-facing lines (retries, rate-limit downgrades,
  fan-out progress) rendered by ``rich.logging.RichHandler`` on one shared
  console, so warning summaries and log lines never interleave.
* ``error_logger``: failures, written to the main log file through a
  ``QueueHandler``/``QueueListener`` pair so file I/O stays off the event loop.

Each process run is framed in the log file by a banner; the file is trimmed
to the last ``logging.max_runs`` runs when its handler closes.
"""

from __future__ import annotations

import logging
import queue
import sys
import time
import traceback
from datetime import UTC, datetime
from logging.handlers import QueueHandler, QueueListener
from pathlib import Path
from typing import TYPE_CHECKING, Final, Literal

from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from core.models.config_models import AppConfig

__all__ = [
    "LEVEL_ABBREV",
    "CompactFormatter",
    "LogFormat",
    "LoggerFilter",
    "RunHandler",
    "RunTrackingHandler",
    "SafeQueueListener",
    "create_console_logger",
    "create_fallback_loggers",
    "ensure_directory",
    "get_log_file_path",
    "get_log_levels_from_config",
    "get_loggers",
    "get_shared_console",
    "setup_queue_logging",
]

_console_holder: dict[str, Console] = {}

CONSOLE_LOGGER_NAME: Final = "console_logger"
ERROR_LOGGER_NAME: Final = "error_logger"
CONFIG_LOGGER_NAME: Final = "config"

RUN_MARKER: Final = ">>"
RUN_SEPARATOR: Final = "=" * 80

LEVEL_ABBREV: Final = {
    "DEBUG": "D",
    "INFO": "I",
    "WARNING": "W",
    "ERROR": "E",
    "CRITICAL": "C",
}


def get_shared_console() -> Console:
    """Return the process-wide Rich console, creating it on first use."""
    if "console" not in _console_holder:
        _console_holder["console"] = Console()
    return _console_holder["console"]


class SafeQueueListener(QueueListener):
    """QueueListener whose ``stop`` tolerates a listener that never started."""

    def stop(self) -> None:
        try:
            if getattr(self, "_thread", None) is not None:
                super().stop()
        except (AttributeError, RuntimeError, TypeError) as e:
            print(f"Warning: Error stopping QueueListener: {e}", file=sys.stderr)


class LogFormat:
    """Rich markup helpers for console log lines.

    Example:
        logger.warning("%s retrying %s", LogFormat.api("musicbrainz"), LogFormat.attempt(2, 5))

    """

    @staticmethod
    def entity(name: str) -> str:
        return f"[yellow]{name}[/yellow]"

    @staticmethod
    def api(name: str) -> str:
        """Service label prefixed to executor lines."""
        return f"[bold cyan]{name}[/bold cyan]"

    @staticmethod
    def number(value: float) -> str:
        return f"[bright_white]{value}[/bright_white]"

    @staticmethod
    def status(code: int) -> str:
        """HTTP status colored by class: green 2xx, yellow 429, red otherwise."""
        if 200 <= code < 300:
            color = "green"
        elif code == 429:
            color = "yellow"
        else:
            color = "red"
        return f"[{color}]{code}[/{color}]"

    @staticmethod
    def attempt(current: int, total: int) -> str:
        return f"[bright_white]{current}/{total}[/bright_white]"

    @staticmethod
    def duration(seconds: float) -> str:
        return f"[dim]{seconds:.1f}s[/dim]"


class LoggerFilter:
    """Accepts records from the listed loggers and their children."""

    def __init__(self, allowed_loggers: list[str]) -> None:
        self.allowed_loggers = set(allowed_loggers)

    def filter(self, record: logging.LogRecord) -> bool:
        return any(record.name == name or record.name.startswith(f"{name}.") for name in self.allowed_loggers)


class RunHandler:
    """Formats run banners and trims a log file to its most recent runs."""

    def __init__(self, max_runs: int = 3) -> None:
        self.max_runs = max_runs
        self.run_start_time = time.monotonic()

    @staticmethod
    def format_run_header(run_name: str) -> str:
        started = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
        return f"\n{RUN_SEPARATOR}\n{RUN_MARKER} NEW RUN: {run_name} - {started}\n{RUN_SEPARATOR}\n"

    def format_run_footer(self, run_name: str) -> str:
        elapsed = time.monotonic() - self.run_start_time
        return f"{RUN_SEPARATOR}\n{RUN_MARKER} END RUN: {run_name} - Total time: {elapsed:.2f}s\n{RUN_SEPARATOR}\n"

    def trim_log_to_max_runs(self, log_file: str) -> None:
        """Keep only the last ``max_runs`` runs of ``log_file``.

        A run starts at the separator line directly above its ``NEW RUN``
        line. Files with fewer runs are left untouched.
        """
        path = Path(log_file)
        if self.max_runs <= 0 or not path.exists():
            return

        try:
            lines = path.read_text(encoding="utf-8", errors="ignore").splitlines(keepends=True)
            run_starts = [
                index - 1
                for index, line in enumerate(lines)
                if index > 0 and line.startswith(f"{RUN_MARKER} NEW RUN:") and lines[index - 1].rstrip() == RUN_SEPARATOR
            ]
            if len(run_starts) <= self.max_runs:
                return

            trimmed = path.with_name(f"{path.name}.tmp")
            trimmed.write_text("".join(lines[run_starts[-self.max_runs] :]), encoding="utf-8")
            trimmed.replace(path)
        except OSError as e:
            # Called from handler close, when the loggers themselves may be gone
            print(f"Error trimming log file {log_file}: {e}", file=sys.stderr)


def ensure_directory(path: str, error_logger: logging.Logger | None = None) -> None:
    """Create ``path`` and its parents if missing; failures are reported, not raised."""
    try:
        if path:
            Path(path).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        if error_logger:
            error_logger.exception("Error creating directory %s", path)
        else:
            print(f"ERROR: Error creating directory {path}: {e}", file=sys.stderr)


class CompactFormatter(logging.Formatter):
    """File log formatter with one-letter level names."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str = "%H:%M:%S",
        style: Literal["%", "{", "$"] = "%",
    ) -> None:
        super().__init__(fmt or "%(asctime)s %(levelname)s [%(name)s] %(message)s", datefmt, style)

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        record.levelname = LEVEL_ABBREV.get(levelname, levelname[:1])
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class RunTrackingHandler(logging.FileHandler):
    """File handler that frames its output with run banners.

    The header is written before the first record and names the logger of
    that record; the footer repeats the name. Closing trims the file.
    """

    def __init__(
        self,
        filename: str,
        *,
        mode: str = "a",
        encoding: str | None = "utf-8",
        delay: bool = False,
        run_handler: RunHandler | None = None,
    ) -> None:
        ensure_directory(str(Path(filename).parent))
        super().__init__(filename, mode, encoding, delay)
        self.run_handler = run_handler
        self.run_name: str | None = None
        self._closed = False

    def emit(self, record: logging.LogRecord) -> None:
        if self.run_handler is not None and self.run_name is None and self.stream:
            # Set before writing so a failing header is attempted only once
            self.run_name = record.name
            try:
                self.stream.write(self.run_handler.format_run_header(self.run_name))
            except OSError as e:
                print(f"Failed to write log header: {e}", file=sys.stderr)
                self.handleError(record)
        if self.stream:
            super().emit(record)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        try:
            if self.run_handler is not None and self.run_name is not None and self.stream:
                self.stream.write(self.run_handler.format_run_footer(self.run_name))
                self.flush()
        except (OSError, AttributeError) as e:
            print(f"ERROR: Failed to write log footer for {self.baseFilename}: {e}", file=sys.stderr)
        finally:
            super().close()
            if self.run_handler is not None:
                self.run_handler.trim_log_to_max_runs(self.baseFilename)


def _level_from_name(level_name: str | None, default_level: int = logging.INFO) -> int:
    if not level_name:
        return default_level
    level = logging.getLevelName(str(level_name).upper())
    return level if isinstance(level, int) else default_level


def get_log_levels_from_config(config: AppConfig) -> dict[str, int]:
    """``{"console": level, "main_file": level}`` from ``logging.levels``."""
    levels = config.logging.levels
    return {"console": _level_from_name(levels.console), "main_file": _level_from_name(levels.main_file)}


def get_log_file_path(config: AppConfig) -> str:
    base_dir = Path(config.logging.logs_base_dir).expanduser()
    return str((base_dir / config.logging.main_log_file).resolve())


def create_console_logger(levels: dict[str, int]) -> logging.Logger:
    """Console logger on the shared Rich console; handlers are added only once."""
    console_logger = logging.getLogger(CONSOLE_LOGGER_NAME)
    if not console_logger.handlers:
        console_logger.addHandler(
            RichHandler(
                level=levels["console"],
                console=get_shared_console(),
                show_path=False,
                enable_link_path=False,
                log_time_format="%H:%M:%S",
                markup=True,
            )
        )
        console_logger.setLevel(levels["console"])
        console_logger.propagate = False
    return console_logger


def setup_queue_logging(
    config: AppConfig, levels: dict[str, int], log_file: str
) -> tuple[logging.Logger, SafeQueueListener]:
    """Route the error and config loggers through a queue into the main log file.

    Returns:
        The error logger and the started listener; stop the listener on shutdown
        so the run footer is written.

    """
    file_handler = RunTrackingHandler(log_file, run_handler=RunHandler(config.logging.max_runs))
    file_handler.setFormatter(CompactFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    file_handler.setLevel(levels["main_file"])
    file_handler.addFilter(LoggerFilter([ERROR_LOGGER_NAME, CONFIG_LOGGER_NAME]))

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(-1)
    listener = SafeQueueListener(log_queue, file_handler, respect_handler_level=True)
    listener.start()
    queue_handler = QueueHandler(log_queue)

    for name in (ERROR_LOGGER_NAME, CONFIG_LOGGER_NAME):
        logger = logging.getLogger(name)
        if not any(isinstance(handler, QueueHandler) for handler in logger.handlers):
            # The config module installs a NullHandler until logging is configured
            logger.handlers.clear()
            logger.addHandler(queue_handler)
            logger.setLevel(levels["main_file"])
            logger.propagate = False

    return logging.getLogger(ERROR_LOGGER_NAME), listener


def get_loggers(config: AppConfig) -> tuple[logging.Logger, logging.Logger, SafeQueueListener | None]:
    """Create the console and error loggers plus the queue listener.

    Note:
        This function never raises. On setup failure it returns basic stream
        loggers and no listener.

    Returns:
        Tuple of (console_logger, error_logger, listener)

    """
    try:
        levels = get_log_levels_from_config(config)
        console_logger = create_console_logger(levels)
        error_logger, listener = setup_queue_logging(config, levels, get_log_file_path(config))
    except (OSError, ValueError, AttributeError, TypeError) as e:
        return create_fallback_loggers(e)

    console_logger.debug("Logging configured: console via %s, files via queue", LogFormat.entity("RichHandler"))
    return console_logger, error_logger, listener


def create_fallback_loggers(e: Exception) -> tuple[logging.Logger, logging.Logger, None]:
    """Plain stream loggers used when the regular setup fails."""
    print(f"FATAL ERROR: Failed to configure logging: {e}", file=sys.stderr)
    traceback.print_exc(file=sys.stderr)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    logging.critical("Fallback basic logging configured due to error: %s", e)

    console_fallback = logging.getLogger("console_fallback")
    error_fallback = logging.getLogger("error_fallback")
    if not console_fallback.handlers:
        console_fallback.addHandler(logging.StreamHandler(sys.stdout))
    if not error_fallback.handlers:
        error_fallback.addHandler(logging.StreamHandler(sys.stderr))
    return console_fallback, error_fallback, None
