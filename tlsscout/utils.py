# tlsscout/utils.py

import logging
import os
import traceback
from logging.handlers import RotatingFileHandler

from tlsscout.config import LOG_FOLDER, LOG_PATH

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def log_exception(e, target=None):
    """Log exception information, including stack trace."""
    if target:
        logging.error(
            f"Error scanning {target}: {str(e)}\n{traceback.format_exc()}"
        )
    else:
        logging.error(f"{str(e)}\n{traceback.format_exc()}")


def setup_logging(verbose: bool = False, log_to_file: bool = False):
    """Configure the root logger for console output and an optional rotating log file."""
    handlers = [logging.StreamHandler()]
    if log_to_file:
        os.makedirs(LOG_FOLDER, exist_ok=True)
        handlers.append(RotatingFileHandler(LOG_PATH, maxBytes=10**7, backupCount=5))
    logging.basicConfig(
        handlers=handlers,
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        force=True,
    )
