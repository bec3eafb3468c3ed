import json
import logging
import os
import sys

DEFAULT_LOG_FILE = "/tmp/worksync.log"
_TEXT_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
_FILE_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """One JSON object per line with ts, level, logger, msg (and exc)."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _formatter(debug_format: str, pattern: str) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=_DATE_FORMAT)
    return logging.Formatter(pattern, datefmt=_DATE_FORMAT)


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
    level: str | None = None,
) -> None:
    """
    Configure logging for the host process.

    Args:
        mode: "service" when embedded in a long-running host (file only),
            "cli" for stderr logging.
        debug: If True, overrides WORKSYNC_LOG_LEVEL to DEBUG.
        log_file: Custom log file path (overrides WORKSYNC_LOG_FILE).
        debug_format: "text" (default) or "json" for structured output.
        level: Level name used when WORKSYNC_LOG_LEVEL is unset, e.g.
            from the ``logging.level`` config key.

    Environment variables:
        WORKSYNC_LOG_LEVEL: DEBUG, INFO, WARNING or ERROR.
            Default: WARNING in service mode, INFO in CLI mode.
        WORKSYNC_LOG_FILE: Log file for service mode.
            Default: /tmp/worksync.log
    """
    default_level = "WARNING" if mode == "service" else "INFO"
    env_level = (
        os.getenv("WORKSYNC_LOG_LEVEL") or level or default_level
    ).upper()

    if debug:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, env_level, logging.INFO)

    handlers: list[logging.Handler] = []
    if mode == "service":
        final_log_file = log_file or os.getenv(
            "WORKSYNC_LOG_FILE", DEFAULT_LOG_FILE
        )
        file_handler = logging.FileHandler(final_log_file, mode="a")
        file_handler.setFormatter(_formatter(debug_format, _TEXT_FORMAT))
        handlers.append(file_handler)
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(_formatter(debug_format, _TEXT_FORMAT))
        handlers.append(stderr_handler)

        # An explicit log file is written alongside stderr
        if log_file:
            file_handler = logging.FileHandler(log_file, mode="a")
            file_handler.setFormatter(_formatter(debug_format, _FILE_FORMAT))
            handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers)

    # Silence third-party libs unless DEBUG
    if log_level != logging.DEBUG:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("requests").setLevel(logging.WARNING)
