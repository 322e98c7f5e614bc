"""
Application logging configuration.

Every module obtains the shared "xenbox" logger through setup_logging().
Detailed failure information goes to the log while clients only ever see
the short, static messages carried by the error envelope.
"""
import logging
import sys

LOGGER_NAME = "xenbox"


def setup_logging() -> logging.Logger:
    """
    Configure and return the application logger.

    Output goes to stdout as "<time> - <logger> - <level> - <message>",
    which works unchanged under uvicorn and gunicorn.

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)

    # Prevent duplicate handlers if called multiple times
    if not logger.handlers:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        logger.addHandler(console_handler)

    return logger
