#!/usr/bin/env python3
"""
Logging configuration for the reservation automation engine
Provides per-session log files for debugging unattended reservation runs
"""

import os
import logging
import logging.handlers
import shutil
from datetime import datetime
from typing import Iterable

# Read production mode setting
PRODUCTION_MODE = os.getenv('PRODUCTION_MODE', 'true').lower() == 'true'

# Define the log directory to be a fixed 'latest_log'
LOG_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'logs', 'latest_log')

# Loggers that also write to the dedicated run log
RUN_LOGGERS = (
    'ReservationOrchestrator',
    'RunStateMachine',
    'VerificationMailPoller',
    'ReservationScheduler',
    'PlaywrightPageDriver',
)

_initialized = False


def _clear_previous_session(log_dir: str) -> None:
    if not os.path.exists(log_dir):
        return
    for filename in os.listdir(log_dir):
        file_path = os.path.join(log_dir, filename)
        try:
            if os.path.isfile(file_path) or os.path.islink(file_path):
                os.unlink(file_path)
            elif os.path.isdir(file_path):
                shutil.rmtree(file_path)
        except OSError as e:
            print(f'Failed to delete {file_path}. Reason: {e}')


def _rotating_handler(path: str, max_mb: int, backups: int, level: int,
                      formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backups,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(production_mode: bool = PRODUCTION_MODE, log_dir: str = LOG_DIR,
                  run_loggers: Iterable[str] = RUN_LOGGERS) -> None:
    """
    Set up console and rotating file handlers for a new session.

    Previous logs in ``log_dir`` are removed so every CLI invocation starts
    with a clean set of files.
    """
    global _initialized

    _clear_previous_session(log_dir)
    os.makedirs(log_dir, exist_ok=True)

    main_log_file = os.path.join(log_dir, 'odyssey.log')
    debug_log_file = os.path.join(log_dir, 'odyssey_debug.log')
    error_log_file = os.path.join(log_dir, 'odyssey_errors.log')
    run_log_file = os.path.join(log_dir, 'reservation_runs.log')

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.WARNING if production_mode else logging.DEBUG)
    root_logger.handlers = []

    # Detailed formatter with file, line, and function information
    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d in %(funcName)s()] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING if production_mode else logging.INFO)
    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    root_logger.addHandler(_rotating_handler(
        main_log_file, 10, 5,
        logging.WARNING if production_mode else logging.INFO,
        detailed_formatter,
    ))

    # Debug file only in development
    if not production_mode:
        root_logger.addHandler(_rotating_handler(
            debug_log_file, 50, 3, logging.DEBUG, detailed_formatter,
        ))

    root_logger.addHandler(_rotating_handler(
        error_log_file, 5, 5, logging.ERROR, detailed_formatter,
    ))

    # Run log keeps the full story of every reservation run, even in production
    run_handler = _rotating_handler(
        run_log_file, 20, 5,
        logging.INFO if production_mode else logging.DEBUG,
        detailed_formatter,
    )
    for name in run_loggers:
        named_logger = logging.getLogger(name)
        # Drop the handler left by a previous setup_logging() call
        named_logger.handlers = [
            h for h in named_logger.handlers
            if not isinstance(h, logging.handlers.RotatingFileHandler)
        ]
        named_logger.addHandler(run_handler)
        named_logger.setLevel(logging.INFO if production_mode else logging.DEBUG)

    # Reduce noise from external libraries
    logging.getLogger('asyncio').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('telegram').setLevel(logging.INFO)

    _initialized = True

    root_logger.info("=" * 80)
    root_logger.info(f"Reservation automation logging initialized - {datetime.now()}")
    root_logger.info(f"Production Mode: {'ON' if production_mode else 'OFF'}")
    root_logger.info(f"Main log: {main_log_file}")
    if not production_mode:
        root_logger.info(f"Debug log: {debug_log_file}")
    root_logger.info(f"Error log: {error_log_file}")
    root_logger.info(f"Run log: {run_log_file}")
    root_logger.info("=" * 80)


def is_initialized() -> bool:
    """Return True once :func:`setup_logging` has run in this process."""
    return _initialized


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name

    Args:
        name: Logger name (usually __name__ or a component name)

    Returns:
        logging.Logger instance
    """
    return logging.getLogger(name)
