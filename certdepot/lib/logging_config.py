"""JSON logging configuration for depot scripts.

Library modules log through ``logging.getLogger(__name__)``; their records
propagate to the ``certdepot`` logger configured here.
"""

import logging

from pythonjsonlogger import jsonlogger

LOGGER_NAME = "certdepot"


class DepotJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter keeping timestamp, level, logger, message, exc_info, funcName and lineno."""

    allowed_fields = frozenset(
        {"timestamp", "level", "logger", "message", "exc_info", "funcName", "lineno"}
    )

    def add_fields(self, log_record, record, message_dict):
        """Trim the record to the allowed field set.

        Args:
            log_record: Dict to be logged as JSON
            record: LogRecord object from logging framework
            message_dict: Dict containing message and args
        """
        super().add_fields(log_record, record, message_dict)

        if "levelname" in log_record:
            log_record["level"] = log_record.pop("levelname")
        # Module path of the emitting library logger, e.g. certdepot.lib.lifecycle
        log_record["logger"] = record.name

        for key in [key for key in log_record if key not in self.allowed_fields]:
            log_record.pop(key)


def _setup_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)

    # Prevent duplicate handlers if module reloaded
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(
        DepotJsonFormatter(
            fmt="%(timestamp)s %(levelname)s %(funcName)s %(lineno)d %(message)s",
            timestamp=True,
        )
    )

    logger.setLevel(logging.INFO)
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def set_verbose(verbose: bool) -> None:
    """Switch the depot logger between INFO and DEBUG."""
    LOGGER.setLevel(logging.DEBUG if verbose else logging.INFO)


# Singleton logger instance - import this in scripts
LOGGER = _setup_logger()
