"""Tracing utilities for debugging and observability."""

import time
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from ...schemas.trace import ChatTrace, TraceEventType


def _preview(text: Optional[str], length: int = 100) -> Optional[str]:
    if text is None:
        return None
    return text[:length] + "..." if len(text) > length else text


@contextmanager
def trace_step(
    trace: ChatTrace,
    event_type: TraceEventType,
) -> Generator[Dict[str, Any], None, None]:
    """Context manager that records one pipeline step with its duration.

    Args:
        trace: ChatTrace to record the event to
        event_type: Event recorded when the step completes

    Yields:
        Dict to populate with data for the event
    """
    start_time = time.time()
    data: Dict[str, Any] = {}
    try:
        yield data
    except Exception as e:
        data["error"] = str(e)
        raise
    finally:
        trace.add_event(event_type, data=data, duration_ms=(time.time() - start_time) * 1000)


def trace_llm_call(
    trace: ChatTrace,
    model: str,
    prompt_preview: str,
    response_preview: Optional[str] = None,
    duration_ms: float = 0,
    error: Optional[str] = None,
) -> None:
    """Record a generation call in the trace.

    Args:
        trace: ChatTrace to record to
        model: Model that served the call
        prompt_preview: The user message (truncated to ~100 chars)
        response_preview: The reply (truncated to ~100 chars)
        duration_ms: Call duration in milliseconds
        error: Upstream error text when the call failed
    """
    data: Dict[str, Any] = {
        "model": model,
        "prompt_preview": _preview(prompt_preview),
        "response_preview": _preview(response_preview),
    }
    if error is not None:
        data["error"] = error
    trace.add_event(
        TraceEventType.LLM_FAILED if error is not None else TraceEventType.LLM_CALL,
        data=data,
        duration_ms=duration_ms,
    )


def format_trace_summary(trace: ChatTrace) -> str:
    """Format a trace into a human-readable summary.

    Args:
        trace: ChatTrace to summarize

    Returns:
        Formatted summary string
    """
    lines = [
        f"Trace {trace.trace_id} ({trace.user_query[:50]}...)",
        f"  Session: {trace.session_id}",
        f"  Duration: {trace.total_duration_ms:.0f}ms",
        f"  LLM calls: {trace.llm_calls}",
        f"  Outcome: {trace.outcome} (success={trace.success})",
    ]

    for event in trace.events:
        duration = f" {event.duration_ms:.0f}ms" if event.duration_ms is not None else ""
        lines.append(f"    - {event.event_type}{duration}")

    for degradation in trace.degradations:
        lines.append(f"  Degraded: {degradation.step} ({degradation.reason})")

    return "\n".join(lines)
