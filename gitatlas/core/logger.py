"""Logging configuration for the gitatlas CLI."""

import os
import sys
import socket
import logging
from datetime import datetime
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(
    operation: str = "scan",
    verbose: bool = False,
    logs_dir: Optional[str] = None
) -> logging.Logger:
    """Send gitatlas logs to a per-run file and to stdout.

    Each run gets ``gitatlas_<operation>_<timestamp>.log``, starting with
    the hostname it ran on.

    Args:
        operation: CLI operation, used in the log filename
        verbose: Log at DEBUG level
        logs_dir: Directory for log files (default: ./logs)

    Returns:
        The ``gitatlas`` logger
    """
    logs_dir = logs_dir or os.path.join(os.getcwd(), 'logs')
    os.makedirs(logs_dir, exist_ok=True)
    log_file = os.path.join(logs_dir, f"gitatlas_{operation}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log")

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout)
        ],
        force=True
    )

    logger = get_logger()
    logger.info(f"gitatlas {operation} on {socket.gethostname()}")
    logger.debug(f"Log file: {log_file}")
    return logger


def get_logger() -> logging.Logger:
    return logging.getLogger('gitatlas')
