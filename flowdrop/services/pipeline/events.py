"""Event sinks for pipeline and job notifications.

Delivery is best-effort: emit() never raises into the scheduler. A failing
sink is logged and the scheduling step continues.

Usage:
    from flowdrop.services.pipeline.events import create_event_sink

    sink = create_event_sink(callback=my_async_callback)
    await sink.emit("job.created", job, {"pipeline_id": pipeline.id})
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from flowdrop.core.logging import get_logger
from flowdrop.constants import EVENT_PREFIX

logger = get_logger(__name__)

EventCallback = Callable[[str, Any, Dict[str, Any]], Awaitable[None]]


def _subject_id(subject: Any) -> Optional[str]:
    return getattr(subject, "id", None)


class EventSinkProtocol(Protocol):
    """Protocol for event sinks (enables duck typing)."""

    async def emit(self, name: str, subject: Any,
                   context: Optional[Dict[str, Any]] = None) -> None:
        """Publish a named notification about a job or pipeline."""
        ...


class NullEventSink:
    """No-op sink (Null Object pattern)."""

    async def emit(self, name: str, subject: Any,
                   context: Optional[Dict[str, Any]] = None) -> None:
        return None


class LoggingEventSink:
    """Writes every event to the structured log."""

    async def emit(self, name: str, subject: Any,
                   context: Optional[Dict[str, Any]] = None) -> None:
        logger.info("Event emitted",
                    event_name=f"{EVENT_PREFIX}{name}",
                    subject_type=type(subject).__name__,
                    subject_id=_subject_id(subject),
                    **(context or {}))


class CallbackEventSink:
    """Forwards events to an async callback.

    Signature: async def callback(name, subject, context)
    """

    def __init__(self, callback: EventCallback):
        self.callback = callback

    async def emit(self, name: str, subject: Any,
                   context: Optional[Dict[str, Any]] = None) -> None:
        try:
            await self.callback(name, subject, context or {})
        except Exception as e:
            logger.warning("Event callback failed",
                           event_name=name,
                           subject_id=_subject_id(subject),
                           error=str(e))


class RecordingEventSink:
    """Keeps emitted events in memory, for inspection and tests."""

    def __init__(self):
        self.events: List[Tuple[str, Any, Dict[str, Any]]] = []

    async def emit(self, name: str, subject: Any,
                   context: Optional[Dict[str, Any]] = None) -> None:
        self.events.append((name, subject, dict(context or {})))

    def names(self) -> List[str]:
        return [name for name, _, _ in self.events]

    def of(self, name: str) -> List[Tuple[Any, Dict[str, Any]]]:
        return [(subject, ctx) for n, subject, ctx in self.events if n == name]


async def emit_safely(sink: EventSinkProtocol, name: str, subject: Any,
                      context: Optional[Dict[str, Any]] = None) -> None:
    """Emit through any sink, logging instead of raising on failure."""
    try:
        await sink.emit(name, subject, context)
    except Exception as e:
        logger.warning("Event sink failed",
                       event_name=name,
                       subject_id=_subject_id(subject),
                       error=str(e))


def create_event_sink(callback: Optional[EventCallback] = None,
                      enabled: bool = True) -> EventSinkProtocol:
    """Factory function to create the appropriate event sink.

    Args:
        callback: Optional async callback to forward events to
        enabled: Whether events should be published at all

    Returns:
        CallbackEventSink if a callback is given, LoggingEventSink if enabled,
        NullEventSink otherwise
    """
    if not enabled:
        logger.debug("Events disabled")
        return NullEventSink()
    if callback is not None:
        return CallbackEventSink(callback)
    return LoggingEventSink()
