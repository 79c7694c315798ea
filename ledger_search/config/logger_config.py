# logger_config.py

import logging
import sys
import os
from datetime import datetime

LOG_FORMAT = "%(asctime)s — %(levelname)s — %(name)s — %(message)s"


def setup_logger(name=None, log_dir=None, debug_mode=False, prefix="find_ledger"):
    """
    Setup and return a logger for a ledger search run.

    Args:
        name (str): Logger name; None configures the root logger so that every
            `ledger_search` module logger inherits the handlers.
        log_dir (str): Directory to save a per-run log file. If None, no file logging.
        debug_mode (bool): Set True for DEBUG level (per-iteration bracket
            updates), False for INFO level.
        prefix (str): File name prefix of the per-run log file.
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG if debug_mode else logging.INFO)

    formatter = logging.Formatter(LOG_FORMAT)

    # Repeated calls (tests, notebooks) must not stack handlers.
    for handler in list(logger.handlers):
        if getattr(handler, "_ledger_search", False):
            logger.removeHandler(handler)
            handler.close()

    # Progress records go to stdout, diagnostics to stderr
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler._ledger_search = True
    logger.addHandler(console_handler)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        log_file = os.path.join(log_dir, f"{prefix}_{timestamp}.log")
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler._ledger_search = True
        logger.addHandler(file_handler)

    return logger
