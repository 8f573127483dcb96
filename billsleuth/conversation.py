"""Conversation state for a single investigation run."""

import json
from dataclasses import dataclass
from typing import Any, Iterable, Optional


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the reasoning model."""

    id: str
    name: str
    arguments: Any

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass(frozen=True)
class Observation:
    """Result of one tool call, paired to it by call id."""

    call_id: str
    tool_name: str
    payload: dict[str, Any]
    is_error: bool = False

    def to_content(self) -> str:
        """Serialize the payload for the model."""
        return json.dumps(self.payload, indent=2, default=str)


class ConversationState:
    """Append-only message history owned by one run.

    Messages use a provider-neutral shape:
        {"role": "system" | "user", "content": ...}
        {"role": "assistant", "content": str, "tool_calls": [...]}
        {"role": "tool", "tool_call_id": str, "name": str, "content": str, "is_error": bool}
    """

    def __init__(self, system_prompt: Any, user_message: str):
        """Initialize conversation state.

        Args:
            system_prompt: System instruction (string or structured blocks)
            user_message: The operator's request
        """
        self._messages: list[dict] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ]
        self._awaiting: list[str] = []

    @property
    def awaiting_observations(self) -> tuple[str, ...]:
        """Call ids that still need an observation."""
        return tuple(self._awaiting)

    def add_assistant_reply(self, content: str, tool_calls: Iterable[ToolCall]) -> None:
        """Append a model reply that requested tools.

        Raises:
            ValueError: If observations from the previous reply are still owed
        """
        if self._awaiting:
            raise ValueError(f"Observations still owed for calls: {', '.join(self._awaiting)}")

        calls = list(tool_calls)
        self._messages.append({
            "role": "assistant",
            "content": content or "",
            "tool_calls": [call.to_dict() for call in calls],
        })
        self._awaiting = [call.id for call in calls]

    def add_observation(self, observation: Observation) -> None:
        """Append a tool observation for a pending call.

        Raises:
            ValueError: If no call with this id is awaiting a result
        """
        if observation.call_id not in self._awaiting:
            raise ValueError(f"No pending tool call with id {observation.call_id}")

        self._awaiting.remove(observation.call_id)
        self._messages.append({
            "role": "tool",
            "tool_call_id": observation.call_id,
            "name": observation.tool_name,
            "content": observation.to_content(),
            "is_error": observation.is_error,
        })

    def to_messages(self) -> list[dict]:
        """Convert to LLM message format.

        Returns:
            Copy of the message list
        """
        return [dict(m) for m in self._messages]

    def last_assistant_text(self) -> Optional[str]:
        for message in reversed(self._messages):
            if message["role"] == "assistant" and message.get("content"):
                return message["content"]
        return None

    def __len__(self) -> int:
        return len(self._messages)
