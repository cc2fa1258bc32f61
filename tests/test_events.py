"""Tests for event sinks."""

from flowdrop.services.pipeline.events import (
    CallbackEventSink,
    LoggingEventSink,
    NullEventSink,
    RecordingEventSink,
    create_event_sink,
    emit_safely,
)
from flowdrop.services.pipeline.models import Job


class BrokenSink:

    async def emit(self, name, subject, context=None):
        raise RuntimeError("unreachable broker")


class TestSinks:

    async def test_callback_receives_event(self):
        received = []

        async def callback(name, subject, context):
            received.append((name, subject.node_id, context))

        sink = CallbackEventSink(callback)
        await sink.emit("job.created", Job(node_id="a", id="1"), {"pipeline_id": "p"})

        assert received == [("job.created", "a", {"pipeline_id": "p"})]

    async def test_callback_failure_is_contained(self):
        async def callback(name, subject, context):
            raise ValueError("bad subscriber")

        sink = CallbackEventSink(callback)
        await sink.emit("job.created", Job(node_id="a", id="1"))

    async def test_logging_sink_accepts_context(self):
        await LoggingEventSink().emit("pipeline.started", Job(node_id="a", id="1"),
                                      {"job_count": 3})

    async def test_recording_sink(self):
        sink = RecordingEventSink()
        job = Job(node_id="a", id="1")
        await sink.emit("job.created", job, {"node_id": "a"})
        await sink.emit("job.started", job)

        assert sink.names() == ["job.created", "job.started"]
        assert sink.of("job.started") == [(job, {})]

    async def test_emit_safely_swallows_sink_errors(self):
        await emit_safely(BrokenSink(), "job.created", Job(node_id="a"), {})


class TestFactory:

    def test_disabled(self):
        assert isinstance(create_event_sink(enabled=False), NullEventSink)

    def test_callback(self):
        async def callback(name, subject, context):
            return None

        assert isinstance(create_event_sink(callback=callback), CallbackEventSink)

    def test_default_logs(self):
        assert isinstance(create_event_sink(), LoggingEventSink)
