"""Structured logging helpers for request tracing."""

import contextvars
import uuid
from datetime import datetime
from typing import Any, Dict, Optional
from regis_client.config.settings import settings
from regis_client.utils.logger import logger

# Context variable for correlation ID
_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)


def generate_correlation_id() -> str:
    """
    Generate a unique correlation ID for request tracking.

    Returns:
        Unique correlation ID string (e.g., "req-abc123")
    """
    return f"req-{uuid.uuid4().hex[:8]}"


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


class CorrelationContext:
    """Context manager binding a correlation ID to the current task."""

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or generate_correlation_id()
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> str:
        self._token = _correlation_id.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            try:
                _correlation_id.reset(self._token)
            except ValueError:
                # Token created in another context (e.g. a task spawned
                # inside the block); that context ends on its own
                pass
            self._token = None


def _log_structured_event(
    event_type: str,
    level: str = "INFO",
    message: Optional[str] = None,
    **kwargs: Any
) -> None:
    """
    Log a structured event with consistent format.

    Args:
        event_type: Type of event (e.g., "chat_request", "retry_attempt")
        level: Log level (INFO, DEBUG, WARNING, ERROR)
        message: Optional message to log
        **kwargs: Additional fields to include in the log
    """
    now = datetime.now()
    log_data = {
        "event_type": event_type,
        "timestamp_iso": now.isoformat(),
        "timestamp_unix": now.timestamp(),
        **kwargs
    }

    correlation_id = get_correlation_id()
    if correlation_id and settings.ENABLE_CORRELATION_IDS:
        log_data["correlation_id"] = correlation_id

    bound_logger = logger.bind(**log_data)
    log_func = getattr(bound_logger, level.lower())
    log_func(message or f"{event_type} event")


def log_chat_request(prompt: str, endpoint: str, model: Optional[str] = None, **kwargs: Any) -> None:
    """
    Log an outgoing prompt.

    Args:
        prompt: The user's prompt (truncated to 200 chars)
        endpoint: Backend endpoint ("execute" or "stream")
        model: Requested model, if any
    """
    _log_structured_event(
        event_type="chat_request",
        prompt=prompt[:200],
        prompt_length=len(prompt),
        endpoint=endpoint,
        model=model,
        **kwargs
    )


def log_chat_response(
    latency_ms: int,
    success: bool = True,
    error_kind: Optional[str] = None,
    error_message: Optional[str] = None,
    **kwargs: Any
) -> None:
    """
    Log the outcome of an orchestrator call with its metrics.

    Args:
        latency_ms: Wall-clock latency in milliseconds
        success: Whether the call produced a result
        error_kind: ErrorKind value when the call failed
        error_message: Error message when the call failed
        **kwargs: Additional metrics (attempts, chunk_count, ...)
    """
    _log_structured_event(
        event_type="chat_response",
        level="INFO" if success else "WARNING",
        latency_ms=latency_ms,
        success=success,
        error_kind=error_kind,
        error_message=error_message,
        **kwargs
    )


def log_retry_attempt(attempt: int, max_attempts: int, reason: str, delay_ms: int) -> None:
    _log_structured_event(
        event_type="retry_attempt",
        level="WARNING",
        message=f"Attempt {attempt}/{max_attempts} failed ({reason}), retrying in {delay_ms}ms",
        attempt=attempt,
        max_attempts=max_attempts,
        reason=reason,
        delay_ms=delay_ms,
    )


def log_auth_refresh(success: bool, **kwargs: Any) -> None:
    _log_structured_event(
        event_type="auth_refresh",
        level="INFO" if success else "WARNING",
        message="Session refreshed" if success else "Session refresh failed",
        success=success,
        **kwargs
    )


def log_queue_event(action: str, request_id: str, queue_length: int, **kwargs: Any) -> None:
    """
    Log an offline queue state change.

    Args:
        action: enqueued, sent, retry, dropped or removed
        request_id: QueuedRequest id
        queue_length: Queue length after the change
    """
    _log_structured_event(
        event_type="queue_event",
        message=f"Offline queue {action}: {request_id} (length={queue_length})",
        action=action,
        request_id=request_id,
        queue_length=queue_length,
        **kwargs
    )


def log_error(
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    **kwargs: Any
) -> None:
    """
    Log a structured error event.

    Args:
        error_type: Type of error (e.g., "request_error", "queue_error")
        error_message: Error message
        context: Additional context about the error
        **kwargs: Additional fields to include
    """
    _log_structured_event(
        event_type="error",
        level="ERROR",
        error_type=error_type,
        error_message=error_message,
        context=context,
        **kwargs
    )
