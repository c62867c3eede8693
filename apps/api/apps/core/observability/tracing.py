"""
Log-based tracing spans.

Emits span start/complete/error records through the sanitized logger so a
slow or failing billing operation can be followed by request id.
"""
import logging
import time
from contextlib import contextmanager
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


@contextmanager
def trace_span(name: str, attributes: Optional[Dict[str, Any]] = None):
    """
    Context manager for creating trace spans.

    Usage:
        with trace_span('add_payment', attributes={'treatment_id': str(treatment.id)}):
            ...
    """
    start_time = time.time()
    attributes = attributes or {}

    logger.debug(
        f'Span started: {name}',
        extra={
            'event': 'span_start',
            'span_name': name,
            'attributes': attributes,
        }
    )

    try:
        yield
    except Exception as e:
        logger.error(
            f'Span failed: {name}',
            extra={
                'event': 'span_error',
                'span_name': name,
                'duration_ms': round((time.time() - start_time) * 1000, 2),
                'error_type': e.__class__.__name__,
                'attributes': attributes,
            }
        )
        raise
    else:
        logger.debug(
            f'Span completed: {name}',
            extra={
                'event': 'span_complete',
                'span_name': name,
                'duration_ms': round((time.time() - start_time) * 1000, 2),
                'attributes': attributes,
            }
        )
