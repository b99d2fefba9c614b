"""
Error taxonomy and unified error reporting.

Exception hierarchy:

    RarityEngineError               500
    ├── InvalidRequest              400  caller parameters missing or malformed
    └── RarityComputationError      500  a cache refresh failed
        └── UpstreamError           500  marketplace returned non-success / network failure
            └── InvalidResponse     500  marketplace returned 200 with an unusable payload

Every error carries a human-readable message that is safe to return to the
caller: no api keys, no upstream URLs, no stack traces.

Reporting:
    # Capture an exception (structlog + Sentry when configured)
    capture_exception(exc, context={"token_id": "0.0.1234"})
"""

from typing import Optional, Any, Dict
from datetime import datetime, timezone
import structlog

from nft_rarity.core.context import get_request_id, get_context_dict

logger = structlog.get_logger(__name__)

__all__ = [
    "RarityEngineError",
    "InvalidRequest",
    "RarityComputationError",
    "UpstreamError",
    "InvalidResponse",
    "init_sentry",
    "capture_exception",
    "is_sentry_enabled",
]


class RarityEngineError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    error: str = "Internal error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(RarityEngineError):
    """Caller-supplied parameters are missing or malformed. Never retried."""

    status_code = 400
    error = "Invalid request"


class RarityComputationError(RarityEngineError):
    """A refresh (assemble, normalize, tabulate, score, rank) failed."""

    error = "Failed to calculate rarity"


class UpstreamError(RarityComputationError):
    """The marketplace API returned a non-success status or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = status_code


class InvalidResponse(UpstreamError):
    """The marketplace API answered 200 without the expected success flag or record list."""


_sentry_initialized: bool = False


def init_sentry(dsn: str, environment: str = "production", traces_sample_rate: float = 0.1) -> bool:
    """
    Initialize Sentry SDK for error tracking.

    Args:
        dsn: Sentry DSN (from project settings)
        environment: Environment name (production, staging, development)
        traces_sample_rate: Percentage of transactions to trace (0.0-1.0)

    Returns:
        True if initialization successful, False otherwise
    """
    global _sentry_initialized

    if not dsn:
        logger.info("Sentry disabled (no DSN provided)")
        return False

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
            integrations=[FastApiIntegration(transaction_style="endpoint")],
            before_send=_before_send,
        )
    except Exception as e:
        logger.error("Failed to initialize Sentry", error=str(e))
        return False

    _sentry_initialized = True
    logger.info("Sentry initialized", environment=environment, traces_sample_rate=traces_sample_rate)
    return True


def _before_send(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Tag events with the request id and strip query strings (they carry api keys)."""
    if "request" in event:
        event["request"].pop("query_string", None)

    request_id = get_request_id()
    if request_id:
        event.setdefault("tags", {})["request_id"] = request_id

    return event


def is_sentry_enabled() -> bool:
    """Check if Sentry is initialized."""
    return _sentry_initialized


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
) -> Optional[str]:
    """
    Capture an exception with structured logging, and Sentry when enabled.

    Args:
        exc: Exception to capture
        context: Additional context dict (e.g., {"token_id": "0.0.1234"})
        level: Severity level (warning, error, fatal)

    Returns:
        Sentry event ID or None if not sent
    """
    enriched_context = {
        **get_context_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error_type": type(exc).__name__,
        **(context or {}),
    }

    log_func = getattr(logger, level, logger.error)
    log_func("Exception captured", exc_info=exc, **enriched_context)

    if _sentry_initialized:
        import sentry_sdk

        try:
            with sentry_sdk.new_scope() as scope:
                for key, value in enriched_context.items():
                    if value is not None:
                        scope.set_extra(key, value)
                scope.level = level
                return sentry_sdk.capture_exception(exc)
        except Exception as e:
            logger.warning("Failed to send exception to Sentry", error=str(e))

    return None
