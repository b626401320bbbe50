"""
Pricing error taxonomy and Sentry reporting.

- ConfigurationError: a required credential/setting is missing. Fatal, never
  retried, never swallowed by batch loops.
- UpstreamUnavailable: an external source timed out, could not be reached, or
  answered with a non-2xx status. Recoverable; triggers the next fallback.
- UpstreamError: UpstreamUnavailable carrying the HTTP status and body.
- ParseError: a malformed HTML fragment. Recovered locally (row skipped).

Exhausting every lookup tier is not an exception: resolution returns None
and the asset is left untouched.

Batch loops wrap each asset in ErrorHandler:

    with ErrorHandler("refresh_asset_price", context={"asset_id": 123}) as handler:
        await resolver.refresh_asset(asset)
    if handler.failed:
        errors += 1
"""

import logging
import os
from typing import Optional, Any, Dict
from datetime import datetime, timezone

import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from app.core.context import get_request_id, get_context_dict

logger = structlog.get_logger(__name__)

__all__ = [
    "PricingError",
    "ConfigurationError",
    "UpstreamUnavailable",
    "UpstreamError",
    "ParseError",
    "init_sentry",
    "capture_exception",
    "capture_message",
    "ErrorHandler",
]


class PricingError(Exception):
    """Base class for price acquisition failures."""


class ConfigurationError(PricingError):
    """A required credential or setting is missing."""

    def __init__(self, setting: str, message: Optional[str] = None):
        self.setting = setting
        super().__init__(message or f"{setting} is not configured")


class UpstreamUnavailable(PricingError):
    """An external source failed (timeout, transport error or non-2xx)."""

    def __init__(self, source: str, message: str = ""):
        self.source = source
        super().__init__(f"{source}: {message}" if message else source)


class UpstreamError(UpstreamUnavailable):
    """Non-2xx response from a provider API."""

    def __init__(self, source: str, status: int, body: str = ""):
        self.status = status
        self.body = body
        # Bodies can be full HTML error pages
        super().__init__(source, f"HTTP {status}: {body[:200]}")


class ParseError(PricingError):
    """A fragment of vendor HTML did not have the expected structure."""


_sentry_initialized: bool = False


def init_sentry(dsn: str, environment: str = "production", traces_sample_rate: float = 0.1) -> bool:
    """Turn on Sentry when a DSN is configured. Returns whether it is on."""
    global _sentry_initialized

    if not dsn:
        logger.info("Sentry disabled (no DSN provided)")
        return False

    release = os.environ.get("GIT_COMMIT_SHA")
    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            release=release,
            traces_sample_rate=traces_sample_rate,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            # Upstream outages are expected and already mapped to 502
            ignore_errors=[KeyboardInterrupt, SystemExit, UpstreamUnavailable],
            before_send=_before_send,
        )
    except Exception as e:
        logger.error("Failed to initialize Sentry", error=str(e))
        return False

    _sentry_initialized = True
    logger.info("Sentry initialized", environment=environment, release=release)
    return True


def _before_send(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if "/health" in event.get("request", {}).get("url", ""):
        return None
    request_id = get_request_id()
    if request_id:
        event.setdefault("tags", {})["request_id"] = request_id
    return event


def _event_context(extra: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        **get_context_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **(extra or {}),
    }


def _send(send, context: Dict[str, Any], level: str, fingerprint: Optional[list[str]] = None) -> Optional[str]:
    """Runs `send` in a fresh scope carrying the context as extras."""
    if not _sentry_initialized:
        return None
    try:
        with sentry_sdk.new_scope() as scope:
            for key, value in context.items():
                if value is not None:
                    scope.set_extra(key, value)
            if context.get("job_id"):
                scope.set_tag("job_id", context["job_id"])
            if fingerprint:
                scope.fingerprint = fingerprint
            scope.level = level
            return send()
    except Exception as e:
        logger.warning("Failed to send event to Sentry", error=str(e))
    return None


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
    fingerprint: Optional[list[str]] = None,
) -> Optional[str]:
    """
    Log an exception and report it to Sentry.

    Args:
        exc: Exception to capture
        context: Extra fields, e.g. {"asset_id": 123}
        level: Log/Sentry level
        fingerprint: Custom grouping fingerprint for Sentry

    Returns:
        Sentry event ID, or None when Sentry is off
    """
    enriched = _event_context({"error_type": type(exc).__name__, **(context or {})})
    getattr(logger, level, logger.error)("Exception captured", exc_info=exc, **enriched)
    return _send(lambda: sentry_sdk.capture_exception(exc), enriched, level, fingerprint)


def capture_message(message: str, level: str = "info", context: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """
    Report an event that is not an exception, such as a vendor page whose
    rows all failed to parse (usually a markup change).
    """
    enriched = _event_context(context)
    getattr(logger, level, logger.info)(message, **enriched)
    return _send(lambda: sentry_sdk.capture_message(message, level=level), enriched, level)


class ErrorHandler:
    """
    Wraps one unit of work inside a batch. Unexpected failures are logged,
    reported and suppressed so the batch continues; `failed` tells the
    caller to count an error. ConfigurationError always propagates since no
    later item can succeed either.
    """

    def __init__(self, operation: str, context: Optional[Dict[str, Any]] = None):
        self.operation = operation
        self.context = context or {}
        self.event_id: Optional[str] = None
        self.failed = False

    def __enter__(self) -> "ErrorHandler":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_val is None:
            return False

        self.failed = True
        if isinstance(exc_val, ConfigurationError):
            return False

        self.event_id = capture_exception(
            exc_val,
            context={"operation": self.operation, **self.context},
            fingerprint=[self.operation, type(exc_val).__name__],
        )
        return True
