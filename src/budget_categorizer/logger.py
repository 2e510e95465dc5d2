import logging
import logging.config
import os
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers routed through our handlers, with their fixed levels.
_LIBRARY_LEVELS = {
    "uvicorn": "INFO",
    "uvicorn.error": "INFO",
    "uvicorn.access": "INFO",
    "httpx": "WARNING",
}


class ColourizedFormatter(logging.Formatter):
    """Colours the level name when the output is a terminal."""

    _ANSI = {
        logging.DEBUG: "90",
        logging.INFO: "32",
        logging.WARNING: "33",
        logging.ERROR: "31",
        logging.CRITICAL: "31;1",
    }

    def __init__(self, *args: object, use_colors: bool | None = None, **kwargs: object) -> None:
        super().__init__(*args, **kwargs)  # type: ignore[arg-type]
        if use_colors is None:
            use_colors = sys.stdout.isatty() and not os.getenv("NO_COLOR")
        self.use_colors = use_colors

    def formatMessage(self, record: logging.LogRecord) -> str:
        code = self._ANSI.get(record.levelno)
        if not self.use_colors or code is None:
            return super().formatMessage(record)
        plain = record.levelname
        record.levelname = f"\x1b[{code}m{plain}\x1b[0m"
        try:
            return super().formatMessage(record)
        finally:
            record.levelname = plain


def get_logging_config() -> dict:
    handlers: dict[str, dict] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "formatter": "colour",
        },
    }
    log_dir = os.getenv("LOG_DIR")
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": os.path.join(log_dir, "app.log"),
            "formatter": "plain",
        }
    names = list(handlers)

    levels = dict(_LIBRARY_LEVELS)
    # SQL echo only when chasing query problems.
    levels["sqlalchemy.engine"] = "DEBUG" if os.getenv("SQL_ECHO") else "WARNING"
    loggers = {
        name: {"handlers": names, "level": level, "propagate": False}
        for name, level in levels.items()
    }
    loggers[""] = {"handlers": names, "level": os.getenv("LOG_LEVEL", "INFO").upper()}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "colour": {"()": ColourizedFormatter, "format": LOG_FORMAT},
            "plain": {"format": LOG_FORMAT},
        },
        "handlers": handlers,
        "loggers": loggers,
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
