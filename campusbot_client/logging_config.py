"""
logging_config.py — Centralized Logging Configuration for the CampusBot Client

This module configures unified logging behavior for the entire client.
It ensures that all components log messages consistently to both console and file.

Features:
    • Combined console and file logging output
    • Process ID tagging for multi-process visibility
    • Standardized log format for all modules
    • Reduced verbosity for external dependencies (httpx, httpcore)
"""

import logging
import sys

from .config import LOG_FILE, LOG_LEVEL


def setup_logging(log_file=LOG_FILE, level=LOG_LEVEL):
    """
    Configures the global logging system for the client.

    The configuration includes:
        - Log level: taken from CAMPUSBOT_LOG_LEVEL (default INFO)
        - Log format: timestamp, log level, process ID, logger name and message
        - Output destinations:
            1. File: 'campusbot_client.log' (persistent log), skipped when log_file is empty
            2. Console (stderr): keeps stdout free for command output
        - Reduced verbosity for third-party libraries such as httpx

    Args:
        log_file (str): Path of the log file. An empty value disables file output.
        level (str | int): Root log level.
    """
    log_format = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(name)s - %(message)s'

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format=log_format,
        handlers=handlers,
        force=True,
    )

    # Reduce verbosity from external libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name):
    """
    Returns a logger instance for a given module or component name.

    Args:
        name (str): The logger name, typically the module's __name__.

    Returns:
        logging.Logger: A logger that follows the global format and handlers.
    """
    return logging.getLogger(name)
