"""Tests for the streaming adapter."""

import time

import pytest

from billsleuth.handlers.investigate import InvestigationHandler
from billsleuth.handlers.streaming import StreamingAdapter


def _adapter(model, registry, buffer_size=4, max_iterations=15):
    handler = InvestigationHandler(
        model, registry, "You are a detective.", max_iterations=max_iterations
    )
    return StreamingAdapter(handler, buffer_size=buffer_size, poll_interval=0.01)


def test_stream_order(scripted_model, reply, call, registry):
    """Test text, announcement, result, answer and done arrive in order."""
    model = scripted_model([
        reply("Checking the plan.", call("load_plan", {"plan_id": "C-1001"})),
        reply("ACME is billed monthly."),
    ])

    fragments = list(_adapter(model, registry).stream("Check C-1001"))

    assert [f.kind for f in fragments] == ["token", "tool_call", "tool_result", "token", "done"]
    assert fragments[0].content == "Checking the plan."
    assert fragments[3].content == "ACME is billed monthly."


def test_stream_incomplete_ends_with_done(scripted_model, reply, call, registry):
    """Test that hitting the round cap still ends the stream with done."""
    model = scripted_model([lambda messages: reply("", call("query_invoices", {}))])

    fragments = list(_adapter(model, registry, max_iterations=2).stream("loop"))

    assert fragments[-1].kind == "done"
    assert [f.kind for f in fragments].count("tool_call") == 2


def test_stream_model_failure(scripted_model, reply, call, registry):
    """Test that a model failure yields exactly one error fragment."""
    model = scripted_model([
        reply("Starting.", call("load_plan", {"plan_id": "C-1001"})),
        RuntimeError("rate limited"),
    ])

    fragments = list(_adapter(model, registry).stream("Check C-1001"))

    assert [f.kind for f in fragments] == ["token", "tool_call", "tool_result", "error"]
    assert "rate limited" in fragments[-1].content
    assert fragments[-1].to_wire()["type"] == "error"


def test_stream_is_lazy(scripted_model, reply, registry):
    """Test that nothing runs before the first fragment is requested."""
    model = scripted_model([reply("hi")])

    stream = _adapter(model, registry).stream("hello")
    time.sleep(0.05)

    assert model.calls == []
    assert [f.kind for f in stream] == ["token", "done"]


def test_stream_small_buffer(scripted_model, reply, call, registry):
    """Test that a one-slot buffer blocks the worker without dropping anything."""
    model = scripted_model([
        reply("a", call("load_plan", {"plan_id": "C-1001"}), call("load_plan", {"plan_id": "C-1007"})),
        reply("b"),
    ])

    fragments = []
    for fragment in _adapter(model, registry, buffer_size=1).stream("check"):
        time.sleep(0.01)
        fragments.append(fragment)

    assert [f.kind for f in fragments] == [
        "token", "tool_call", "tool_result", "tool_call", "tool_result", "token", "done",
    ]


def test_consumer_detach_stops_model_calls(scripted_model, reply, call, registry):
    """Test that closing the stream starts no further model calls."""
    model = scripted_model([lambda messages: reply("", call("query_invoices", {}))])

    stream = _adapter(model, registry, buffer_size=1, max_iterations=100).stream("loop")
    first = next(stream)
    stream.close()

    time.sleep(0.3)
    calls_after_detach = len(model.calls)
    time.sleep(0.3)

    assert first.kind == "tool_call"
    assert len(model.calls) == calls_after_detach
    assert calls_after_detach < 5


class SlowStreamingModel:
    """Streams its reply a word at a time with a pause between words."""

    def __init__(self, reply, delay=0.02):
        self.reply = reply
        self.delay = delay
        self.calls = 0
        self.finished = False
        self.closed_early = False

    def complete(self, messages, tools=None):
        return self.reply

    def stream_complete(self, messages, tools=None):
        self.calls += 1
        try:
            for word in self.reply.content.split(" "):
                time.sleep(self.delay)
                yield word + " "
            yield self.reply
            self.finished = True
        except GeneratorExit:
            self.closed_early = True
            raise


def test_detach_lets_streaming_call_finish(reply, call, registry, monkeypatch):
    """Test that closing the stream mid-token lets the model call reach its reply."""
    words = " ".join(f"word{i}" for i in range(20))
    model = SlowStreamingModel(reply(words, call("query_invoices", {})))

    dispatched = []
    monkeypatch.setattr(registry, "dispatch", dispatched.append)

    stream = _adapter(model, registry, buffer_size=1).stream("loop")
    first = next(stream)
    stream.close()

    assert first.kind == "token"
    assert model.finished
    assert not model.closed_early
    assert model.calls == 1
    assert dispatched == []


def test_buffer_size_must_be_positive(scripted_model, reply, registry):
    """Test rejecting an empty buffer."""
    handler = InvestigationHandler(scripted_model([reply("x")]), registry, "sys")

    with pytest.raises(ValueError):
        StreamingAdapter(handler, buffer_size=0)
