"""Logging for the MCP server.

stdout carries the MCP protocol, so the server logs to a file under
``logs/`` and to stderr only.
"""

import os
import sys
import time
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator

LOGGER_NAME = 'gitatlas.mcp'


def setup_mcp_logging() -> logging.Logger:
    """Configure the ``gitatlas.mcp`` logger.

    DEBUG and above goes to ``logs/gitatlas_mcp_<timestamp>.log``, INFO and
    above to stderr. Records do not propagate to the ``gitatlas`` logger,
    whose console handler writes to stdout.

    Returns:
        Configured logger instance
    """
    logs_dir = os.path.join(os.getcwd(), 'logs')
    os.makedirs(logs_dir, exist_ok=True)
    log_file = os.path.join(logs_dir, f"gitatlas_mcp_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log")

    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.INFO)
    stderr_handler.setFormatter(formatter)

    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(file_handler)
    logger.addHandler(stderr_handler)
    logger.propagate = False

    logger.info(f"MCP log file: {log_file}")
    return logger


def get_mcp_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


@contextmanager
def store_query(name: str, **context: Any) -> Iterator[None]:
    """Log the duration of a snapshot store read at DEBUG level."""
    logger = get_mcp_logger()
    detail = ', '.join(f'{k}={v}' for k, v in context.items())
    logger.debug(f"Store query {name}" + (f" ({detail})" if detail else ""))
    start = time.monotonic()
    try:
        yield
    finally:
        logger.debug(f"Store query {name} took {_elapsed_ms(start)}ms")


@contextmanager
def tool_call(tool_name: str, **arguments: Any) -> Iterator[Dict[str, Any]]:
    """Log one MCP tool call.

    The invocation is logged on entry. The body fills in the yielded dict:
    ``total`` (items returned) and optionally ``counts`` (a mapping such as
    a classification distribution); both are logged with the duration on
    a clean exit. Failures are logged and re-raised.

    Usage:
        with tool_call("atlas_latest", repository=key) as call:
            result = ...
            call['total'] = len(result['snapshots'])
    """
    logger = get_mcp_logger()
    logger.info(f"Tool invoked: {tool_name}")
    if arguments:
        logger.debug(f"Arguments: {arguments}")

    call: Dict[str, Any] = {'total': 0, 'counts': {}}
    start = time.monotonic()
    try:
        yield call
    except Exception as e:
        logger.error(f"{tool_name} failed after {_elapsed_ms(start)}ms: {e}")
        raise

    duration_ms = _elapsed_ms(start)
    counts = ', '.join(f"{k}: {v}" for k, v in sorted(call['counts'].items()))
    logger.info(
        f"{tool_name}: {call['total']} item(s)" + (f" [{counts}]" if counts else "")
        + f" in {duration_ms}ms"
    )
