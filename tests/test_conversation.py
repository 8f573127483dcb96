"""Tests for conversation state."""

import pytest

from billsleuth.conversation import ConversationState, Observation, ToolCall


def test_initial_messages():
    """Test that a conversation starts with system and user messages."""
    state = ConversationState("You are a detective.", "Check C-1001")

    messages = state.to_messages()

    assert [m["role"] for m in messages] == ["system", "user"]
    assert messages[1]["content"] == "Check C-1001"
    assert state.last_assistant_text() is None


def test_observations_pair_with_calls():
    """Test that observations are appended for pending calls only."""
    state = ConversationState("sys", "hi")
    calls = [
        ToolCall("call_1", "load_plan", {"plan_id": "C-1001"}),
        ToolCall("call_2", "query_invoices", {"plan_id": "C-1001"}),
    ]

    state.add_assistant_reply("Looking up the plan.", calls)
    assert state.awaiting_observations == ("call_1", "call_2")

    state.add_observation(Observation("call_2", "query_invoices", {"count": 0}))
    state.add_observation(Observation("call_1", "load_plan", {"found": True}))

    assert state.awaiting_observations == ()
    assert len(state) == 5
    tool_messages = [m for m in state.to_messages() if m["role"] == "tool"]
    assert [m["tool_call_id"] for m in tool_messages] == ["call_2", "call_1"]
    assert state.last_assistant_text() == "Looking up the plan."


def test_unknown_observation_rejected():
    """Test that an observation without a matching call is refused."""
    state = ConversationState("sys", "hi")
    state.add_assistant_reply("", [ToolCall("call_1", "load_plan", {})])

    with pytest.raises(ValueError):
        state.add_observation(Observation("call_9", "load_plan", {}))


def test_reply_before_observations_rejected():
    """Test that a new reply cannot skip owed observations."""
    state = ConversationState("sys", "hi")
    state.add_assistant_reply("", [ToolCall("call_1", "load_plan", {})])

    with pytest.raises(ValueError):
        state.add_assistant_reply("again", [])


def test_observation_content_is_json():
    """Test observation serialization for the model."""
    obs = Observation("call_1", "load_plan", {"found": False, "when": object})

    assert '"found": false' in obs.to_content()
