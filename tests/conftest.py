"""Pytest configuration and fixtures."""

import itertools
import tempfile
from pathlib import Path

import pytest

from billsleuth.config import Config
from billsleuth.conversation import ToolCall
from billsleuth.llm import ModelReply
from billsleuth.tools.dataset import Dataset
from billsleuth.tools.proposals import ProposalStore
from billsleuth.tools.registry import ToolRegistry
from billsleuth.utils.storage import MemoryStorage

DATA_DIR = Path(__file__).resolve().parent.parent / "data"

_call_ids = itertools.count(1)


def make_call(name, arguments=None, call_id=None):
    """Build a tool call the way a model would request it."""
    return ToolCall(
        id=call_id or f"call_{next(_call_ids)}",
        name=name,
        arguments={} if arguments is None else arguments,
    )


class ScriptedModel:
    """Reasoning model stub that replays prepared replies.

    Each entry is a ModelReply, an exception to raise, or a callable taking
    the messages. The last entry repeats once the script runs out.
    """

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def complete(self, messages, tools=None):
        self.calls.append(messages)
        item = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(messages)
        return item


class StreamingScriptedModel(ScriptedModel):
    """Scripted model that delivers reply text word by word."""

    def stream_complete(self, messages, tools=None):
        reply = self.complete(messages, tools)
        words = reply.content.split(" ") if reply.content else []
        for i, word in enumerate(words):
            yield word if i == len(words) - 1 else word + " "
        yield reply


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def dataset():
    """The bundled sample corpus."""
    return Dataset(DATA_DIR)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage):
    return ProposalStore(storage)


@pytest.fixture
def registry(dataset, store):
    return ToolRegistry(dataset, store)


@pytest.fixture
def app_config(temp_dir):
    """Configuration pointing at the sample corpus and a temporary sandbox."""
    return Config(
        anthropic_api_key="test_key",
        data_dir=DATA_DIR,
        sandbox_dir=temp_dir / "sandbox",
        max_iterations=5,
        stream_buffer=4,
    )


@pytest.fixture
def scripted_model():
    """Factory for non-streaming scripted models."""
    return ScriptedModel


@pytest.fixture
def streaming_model():
    """Factory for scripted models with incremental text delivery."""
    return StreamingScriptedModel


@pytest.fixture
def call():
    """Factory for tool calls."""
    return make_call


@pytest.fixture
def reply():
    """Factory for model replies: reply("text", call1, call2)."""

    def _reply(content="", *tool_calls):
        return ModelReply(content=content, tool_calls=list(tool_calls))

    return _reply
