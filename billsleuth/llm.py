"""LLM abstraction layer for Anthropic Claude models."""

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Iterator, Literal, Optional, Protocol, Union, runtime_checkable

from anthropic import Anthropic

from billsleuth.constants import SUPPORTED_MODELS
from billsleuth.conversation import ToolCall


@dataclass
class ModelDescriptor:
    """Descriptor for an LLM model."""

    provider: Literal["anthropic"]
    name: str
    max_output_tokens: int
    temperature: float = 0.0


@dataclass
class ModelReply:
    """One reasoning-model response: text plus any requested tool calls."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


@runtime_checkable
class ReasoningModel(Protocol):
    """Anything that maps a conversation to a reply."""

    def complete(
        self, messages: list[dict[str, Any]], tools: Optional[list[dict]] = None
    ) -> ModelReply:
        ...


@runtime_checkable
class StreamingReasoningModel(ReasoningModel, Protocol):
    """A reasoning model that can deliver text incrementally."""

    def stream_complete(
        self, messages: list[dict[str, Any]], tools: Optional[list[dict]] = None
    ) -> Iterator[Union[str, ModelReply]]:
        ...


def _parse_arguments(arguments: Any) -> dict:
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except json.JSONDecodeError:
            return {}
    return arguments if isinstance(arguments, dict) else {}


def to_anthropic_messages(messages: list[dict[str, Any]]) -> tuple[Any, list[dict]]:
    """Split out the system prompt and convert neutral messages to Anthropic format.

    Consecutive tool observations are folded into a single user message of
    tool_result blocks, as the Messages API requires.

    Args:
        messages: Neutral conversation messages

    Returns:
        Tuple of (system, chat_messages)
    """
    system_messages = [m for m in messages if m["role"] == "system"]
    system = None

    if system_messages:
        first_content = system_messages[0].get("content")
        if isinstance(first_content, list):
            # Structured format with cache_control - use as-is
            system = copy.deepcopy(first_content)
        else:
            system = "\n\n".join(str(m["content"]) for m in system_messages)

    chat_messages: list[dict] = []
    for m in messages:
        role = m["role"]
        if role == "system":
            continue

        if role == "assistant" and m.get("tool_calls"):
            content = []
            if m.get("content"):
                content.append({"type": "text", "text": m["content"]})
            for tc in m["tool_calls"]:
                content.append({
                    "type": "tool_use",
                    "id": tc["id"],
                    "name": tc["name"],
                    "input": _parse_arguments(tc["arguments"]),
                })
            chat_messages.append({"role": "assistant", "content": content})

        elif role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": m["tool_call_id"],
                "content": m["content"],
            }
            if m.get("is_error"):
                block["is_error"] = True

            previous = chat_messages[-1] if chat_messages else None
            if (
                previous
                and previous["role"] == "user"
                and isinstance(previous["content"], list)
                and all(b.get("type") == "tool_result" for b in previous["content"])
            ):
                previous["content"].append(block)
            else:
                chat_messages.append({"role": "user", "content": [block]})

        else:
            chat_messages.append({"role": role, "content": copy.deepcopy(m["content"])})

    return system, chat_messages


class LLM:
    """Anthropic Claude LLM interface."""

    def __init__(self, descriptor: ModelDescriptor, api_key: str, client: Any = None):
        """Initialize LLM client.

        Args:
            descriptor: Model descriptor
            api_key: Anthropic API key
            client: Optional pre-built client (tests)
        """
        self.descriptor = descriptor
        self.api_key = api_key

        if descriptor.provider != "anthropic":
            raise ValueError(f"Only Anthropic models are supported. Got: {descriptor.provider}")

        self.client = client or Anthropic(api_key=api_key)

    def complete(
        self,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ModelReply:
        """Generate a completion.

        Args:
            messages: Neutral conversation messages
            tools: Optional list of tool definitions
            temperature: Optional temperature override
            max_tokens: Optional max tokens override

        Returns:
            ModelReply with text and tool calls
        """
        kwargs = self._build_kwargs(messages, tools, temperature, max_tokens)
        response = self.client.messages.create(**kwargs)
        return self._to_reply(response)

    def stream_complete(
        self,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Iterator[Union[str, ModelReply]]:
        """Generate a streaming completion.

        Yields:
            Text chunks as they arrive, then the complete ModelReply last
        """
        kwargs = self._build_kwargs(messages, tools, temperature, max_tokens)

        with self.client.messages.stream(**kwargs) as stream:
            for text in stream.text_stream:
                if text:
                    yield text
            final = stream.get_final_message()

        yield self._to_reply(final)

    def _build_kwargs(
        self,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict]],
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> dict[str, Any]:
        system, chat_messages = to_anthropic_messages(messages)

        kwargs: dict[str, Any] = {
            "model": self.descriptor.name,
            "messages": chat_messages,
            "temperature": temperature if temperature is not None else self.descriptor.temperature,
            "max_tokens": max_tokens if max_tokens is not None else self.descriptor.max_output_tokens,
        }

        if system:
            kwargs["system"] = system

        if tools:
            kwargs["tools"] = self._convert_tools_to_anthropic(tools)

        return kwargs

    @staticmethod
    def _to_reply(response: Any) -> ModelReply:
        reply = ModelReply()
        for block in response.content:
            if block.type == "text":
                reply.content += block.text
            elif block.type == "tool_use":
                reply.tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=block.input))
        return reply

    def _convert_tools_to_anthropic(self, openai_tools: list[dict]) -> list[dict]:
        """Convert OpenAI tool format to Anthropic format.

        Args:
            openai_tools: List of OpenAI tool definitions

        Returns:
            List of Anthropic tool definitions
        """
        anthropic_tools = []
        for tool in openai_tools:
            if tool["type"] == "function":
                func = tool["function"]
                anthropic_tools.append({
                    "name": func["name"],
                    "description": func.get("description", ""),
                    "input_schema": func.get("parameters", {}),
                })
        return anthropic_tools

    @classmethod
    def parse_model_string(cls, model_str: str, temperature: float = 0.0) -> ModelDescriptor:
        """Parse model string into ModelDescriptor.

        Args:
            model_str: Model string (e.g., "anthropic:claude-sonnet-4-5")
            temperature: Sampling temperature

        Returns:
            ModelDescriptor

        Raises:
            ValueError: If model string is invalid
        """
        if model_str not in SUPPORTED_MODELS:
            raise ValueError(
                f"Unsupported model: {model_str}. "
                f"Supported: {', '.join(SUPPORTED_MODELS.keys())}"
            )

        model_config = SUPPORTED_MODELS[model_str]
        return ModelDescriptor(
            provider=model_config["provider"],
            name=model_config["name"],
            max_output_tokens=model_config["max_output_tokens"],
            temperature=temperature,
        )

    @classmethod
    def list_models(cls) -> list[str]:
        """List all supported model strings.

        Returns:
            List of model strings
        """
        return list(SUPPORTED_MODELS.keys())
