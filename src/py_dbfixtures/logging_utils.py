import logging
import sys
from pythonjsonlogger.json import JsonFormatter


def setup_logging(level=logging.INFO, json_format=False):
    """
    Configures the root logger for test sessions using the fixtures.

    This function can set up either standard text logging or structured
    JSON logging based on the 'json_format' parameter. It removes any
    existing handlers to ensure a clean setup.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove any existing handlers to avoid duplicate logs
    if logger.hasHandlers():
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)

    if json_format:
        formatter = JsonFormatter(
            '%(asctime)s %(name)s %(levelname)s %(message)s'
        )
        log_message = "Structured JSON logging initialized."
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        log_message = "Standard text logging initialized."
    handler.setFormatter(formatter)

    logger.addHandler(handler)

    # Redirect warnings from the 'warnings' module to the logging system
    logging.captureWarnings(True)
    warnings_logger = logging.getLogger('py.warnings')
    warnings_logger.addHandler(handler)
    warnings_logger.setLevel(logging.WARNING)

    logging.getLogger(__name__).info(log_message)
