"""Correlation ID middleware for request tracing.

Every response carries an X-Request-ID header; the same id is attached to
every log entry emitted while handling the request (see core.logging).
"""

import uuid

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
from fastapi import FastAPI


def setup_correlation_middleware(app: FastAPI) -> None:
    """Add correlation ID middleware to FastAPI app.

    If the client sends X-Request-ID it is echoed back, otherwise a new UUID
    is generated.
    """
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name="X-Request-ID",
        generator=lambda: str(uuid.uuid4()),
        validator=None,
        transformer=lambda a: a,
    )


def get_correlation_id() -> str | None:
    """Get the current request's correlation ID, or None outside a request."""
    try:
        return correlation_id.get()
    except LookupError:
        return None


__all__ = ["setup_correlation_middleware", "get_correlation_id"]
