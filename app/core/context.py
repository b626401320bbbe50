"""
Context variables that tag log lines and Sentry events with the unit of work
they belong to: an HTTP request (request_id, correlation_id) or a scheduled
run (job_id). contextvars keep concurrent requests and jobs apart.
"""

from contextvars import ContextVar
from typing import Optional
import uuid

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
_job_id: ContextVar[Optional[str]] = ContextVar("job_id", default=None)


def generate_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:16]}"


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def set_job_id(job_id: str) -> None:
    """Mark the current context as belonging to a scheduled or manual price run."""
    _job_id.set(job_id)


def get_job_id() -> Optional[str]:
    return _job_id.get()


def clear_context() -> None:
    for var in (_request_id, _correlation_id, _job_id):
        var.set(None)


def get_context_dict() -> dict:
    return {
        "request_id": get_request_id(),
        "correlation_id": get_correlation_id(),
        "job_id": get_job_id(),
    }
