import json
import logging
from logging.config import dictConfig

# Chatty third-party loggers; boto logs every retry and signature at DEBUG/INFO.
QUIET_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3")


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Configure root logging once per process.

    ``fmt`` picks the console formatter: ``json`` for structured output,
    ``plain`` for local development.
    """
    formatter = fmt if fmt in {"json", "plain"} else "json"
    loggers: dict[str, dict] = {
        "upload_service.startup": {
            "handlers": ["startup_console"],
            "level": "INFO",
            "propagate": False,
        }
    }
    for name in QUIET_LOGGERS:
        loggers[name] = {"level": "WARNING"}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {"()": JsonFormatter},
                "plain": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": formatter,
                },
                "startup_console": {
                    "class": "logging.StreamHandler",
                    "formatter": "plain",
                },
            },
            "root": {"level": level.upper(), "handlers": ["console"]},
            "loggers": loggers,
        }
    )


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra={"extra": {...}}`` fields are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(extra)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)
