import logging
import logging.config
import sys


def build_logging_config(level: str = "INFO") -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {
                "format": "%(asctime)s %(levelname)s\t%(name)s %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "console",
                "stream": sys.stdout,
            }
        },
        "loggers": {
            "storefront": {
                "handlers": ["console"],
                "level": level,
                "propagate": False,
            }
        },
        "root": {
            "handlers": ["console"],
            "level": "WARNING",
        },
    }


def configure_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure logging for the storefront.

    Args:
        level: log level for the ``storefront`` logger tree.
    """
    logging.config.dictConfig(build_logging_config(level))
    logger = logging.getLogger("storefront")
    logger.debug("Logging configured")
    return logger
