"""Stage timing helpers."""

import logging
import time
from contextlib import contextmanager

logger = logging.getLogger(__name__)


@contextmanager
def timed_stage(operation: str):
    """
    Log the start, completion and duration of a pipeline stage.

    Failures are logged with their elapsed time and re-raised unchanged.

    Example:
        >>> with timed_stage("cross-compiler image build"):
        ...     build()
    """
    start = time.monotonic()
    logger.info(f"Starting {operation}...")
    try:
        yield
    except Exception as e:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.error(f"✗ {operation} failed after {elapsed_ms}ms: {e}")
        raise
    elapsed_ms = int((time.monotonic() - start) * 1000)
    logger.info(f"✓ {operation} completed in {elapsed_ms}ms")
