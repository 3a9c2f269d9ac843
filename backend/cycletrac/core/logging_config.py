import logging.config

from cycletrac.core.config import settings


def build_logging_config(level: str | None = None) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
        },
        "root": {
            "handlers": ["console"],
            "level": level or settings.log_level,
        },
    }


def configure_logging(level: str | None = None) -> None:
    logging.config.dictConfig(build_logging_config(level))
