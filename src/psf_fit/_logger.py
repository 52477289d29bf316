logger_name = "psf_fit"
import sys
import logging
from datetime import datetime

formatter = logging.Formatter(
    "[%(filename)s:%(lineno)s - %(funcName)20s() ] %(message)s"
)


def _get_logger(name=logger_name):
    """
    Return the package logger. Handlers are left to the application
    (see _setup_logger).
    """
    return logging.getLogger(name)


def _setup_logger(
    log_to_term=False,
    log_to_file=True,
    log_file="psf_fit_",
    log_level="INFO",
    name=logger_name,
):
    """Attach terminal and/or timestamped file handlers to the package logger."""
    logger = logging.getLogger(name)
    logger.setLevel(logging.getLevelName(log_level))

    if log_to_term:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if log_to_file:
        log_file = log_file + datetime.today().strftime("%Y%m%d_%H%M%S") + ".log"
        handler = logging.FileHandler(log_file)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
