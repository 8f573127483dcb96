"""Investigation handler: the reason/act loop behind every chat request."""

import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Generator, Literal, Optional

from billsleuth.conversation import ConversationState, Observation, ToolCall
from billsleuth.errors import ExecutionError
from billsleuth.llm import ModelReply, ReasoningModel, StreamingReasoningModel
from billsleuth.tools.registry import ToolName, ToolRegistry
from billsleuth.utils.logging import SessionLogger

logger = logging.getLogger(__name__)

FragmentKind = Literal["token", "tool_call", "tool_result", "done", "error"]
RunStatus = Literal["answered", "incomplete", "cancelled"]


@dataclass(frozen=True)
class Fragment:
    """One unit of the output stream."""

    kind: FragmentKind
    content: str = ""
    tool_name: Optional[str] = None
    data: Any = None

    @classmethod
    def token(cls, text: str) -> "Fragment":
        return cls("token", content=text)

    @classmethod
    def tool_call(cls, call: ToolCall) -> "Fragment":
        return cls("tool_call", tool_name=call.name, data=call.arguments)

    @classmethod
    def tool_result(cls, observation: Observation) -> "Fragment":
        return cls("tool_result", tool_name=observation.tool_name, data=observation.payload)

    @classmethod
    def done(cls) -> "Fragment":
        return cls("done")

    @classmethod
    def error(cls, message: str) -> "Fragment":
        return cls("error", content=message)

    @property
    def terminal(self) -> bool:
        return self.kind in ("done", "error")

    def to_wire(self) -> dict[str, Any]:
        """Render as a wire event: token, done or error."""
        if self.kind == "token":
            return {"type": "token", "content": self.content}
        if self.kind == "tool_call":
            return {"type": "token", "content": f"\n\n🔧 Using tool: {self.tool_name}\n"}
        if self.kind == "tool_result":
            rendered = json.dumps(self.data, indent=2, default=str)
            return {"type": "token", "content": f"📊 Result: {rendered}\n\n"}
        if self.kind == "done":
            return {"type": "done"}
        return {"type": "error", "message": self.content}

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False)



@dataclass
class RunResult:
    """Aggregate outcome of one investigation run."""

    answer: str
    status: RunStatus
    rounds: int
    steps: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    proposal_ids: list[str] = field(default_factory=list)
    run_id: Optional[str] = None
    log_dir: Optional[str] = None


class InvestigationHandler:
    """Drives the reasoning model and the tool registry for one request at a time.

    The handler keeps no per-run state, so one instance can serve concurrent
    runs from different threads.
    """

    def __init__(
        self,
        model: ReasoningModel,
        registry: ToolRegistry,
        system_prompt: Any,
        max_iterations: int = 15,
        sandbox_dir: Optional[Path] = None,
        stream_tokens: bool = True,
    ):
        """Initialize investigation handler.

        Args:
            model: Reasoning model
            registry: Tool registry
            system_prompt: System instruction (string or cached blocks)
            max_iterations: Maximum model calls per run
            sandbox_dir: Where run transcripts go (None disables them)
            stream_tokens: Use incremental text delivery when the model has it
        """
        if max_iterations <= 0:
            raise ValueError("max_iterations must be positive")

        self.model = model
        self.registry = registry
        self.system_prompt = system_prompt
        self.max_iterations = max_iterations
        self.sandbox_dir = sandbox_dir
        self.stream_tokens = stream_tokens

    def run(self, message: str) -> RunResult:
        """Run an investigation to completion.

        Args:
            message: The operator's request

        Returns:
            RunResult with the answer and every tool step

        Raises:
            ExecutionError: If the model call, a tool handler or the transcript fails
        """
        events = self.iter_events(message)
        while True:
            try:
                next(events)
            except StopIteration as stop:
                return stop.value

    def iter_events(
        self, message: str, cancelled: Optional[threading.Event] = None
    ) -> Generator[Fragment, None, RunResult]:
        """Run an investigation, yielding fragments as they are produced.

        The generator's return value is the RunResult. Once ``cancelled`` is
        set, a model call already under way runs to its final reply without
        emitting anything more, and the run then stops before the next model
        or tool call. Keep iterating after cancelling to let it get there.

        Raises:
            ExecutionError: If the model call, a tool handler or the transcript fails
        """
        run_id = uuid.uuid4().hex[:12]
        session: Optional[SessionLogger] = None
        conversation = ConversationState(self.system_prompt, message)

        steps: list[tuple[str, dict[str, Any]]] = []
        proposal_ids: list[str] = []
        rounds = 0
        outcome = "cancelled"
        error: Optional[str] = None

        def result(status: RunStatus, answer: str) -> RunResult:
            return RunResult(
                answer=answer,
                status=status,
                rounds=rounds,
                steps=steps,
                proposal_ids=proposal_ids,
                run_id=run_id,
                log_dir=session.get_log_path() if session else None,
            )

        def stopped() -> bool:
            return cancelled is not None and cancelled.is_set()

        try:
            if self.sandbox_dir:
                session = SessionLogger(self.sandbox_dir, run_id)
                session.log_message("user", message)
            tools = self.registry.definitions()

            while rounds < self.max_iterations:
                if stopped():
                    return result("cancelled", conversation.last_assistant_text() or "")

                rounds += 1
                try:
                    reply = yield from self._invoke_model(
                        conversation.to_messages(), tools, stopped
                    )
                except ExecutionError:
                    raise
                except Exception as e:
                    raise ExecutionError(f"Reasoning model call failed: {e}") from e

                if session:
                    session.log_message(
                        "assistant",
                        reply.content,
                        tool_calls=[call.to_dict() for call in reply.tool_calls],
                    )

                if not reply.tool_calls:
                    outcome = "answered"
                    return result("answered", reply.content)

                conversation.add_assistant_reply(reply.content, reply.tool_calls)

                for call in reply.tool_calls:
                    if stopped():
                        return result("cancelled", reply.content)

                    yield Fragment.tool_call(call)
                    if stopped():
                        return result("cancelled", reply.content)

                    observation = self._dispatch(call)
                    conversation.add_observation(observation)

                    if session:
                        session.log_message("tool", {
                            "tool_call_id": call.id,
                            "name": observation.tool_name,
                            "is_error": observation.is_error,
                            "payload": observation.payload,
                        })

                    steps.append((observation.tool_name, observation.payload))
                    if self._created_proposal(observation):
                        proposal_ids.append(observation.payload["proposal_id"])

                    yield Fragment.tool_result(observation)

            logger.warning(
                "Run %s stopped after %d rounds without a final answer", run_id, rounds
            )
            outcome = "incomplete"
            return result("incomplete", conversation.last_assistant_text() or "")

        except ExecutionError as e:
            outcome = "failed"
            error = str(e)
            logger.error("Run %s failed: %s", run_id, e)
            raise

        except Exception as e:
            outcome = "failed"
            error = str(e)
            logger.exception("Run %s failed unexpectedly", run_id)
            raise ExecutionError(f"Investigation failed: {e}") from e

        finally:
            if session:
                try:
                    session.log_outcome(outcome, rounds, error=error)
                except OSError as e:
                    logger.warning("Could not record outcome of run %s: %s", run_id, e)

    def _invoke_model(
        self, messages: list[dict], tools: list[dict], stopped: Callable[[], bool]
    ) -> Generator[Fragment, None, ModelReply]:
        if self.stream_tokens and isinstance(self.model, StreamingReasoningModel):
            reply = None
            # Drained to the end even after cancellation so the call completes.
            for item in self.model.stream_complete(messages, tools):
                if isinstance(item, ModelReply):
                    reply = item
                elif item and not stopped():
                    yield Fragment.token(item)
            if reply is None:
                raise ExecutionError("Reasoning model stream ended without a reply")
            return reply

        reply = self.model.complete(messages, tools)
        if reply.content and not stopped():
            yield Fragment.token(reply.content)
        return reply

    def _dispatch(self, call: ToolCall) -> Observation:
        try:
            return self.registry.dispatch(call)
        except Exception as e:
            raise ExecutionError(f"Tool {call.name} failed: {e}") from e

    @staticmethod
    def _created_proposal(observation: Observation) -> bool:
        if observation.is_error or "proposal_id" not in observation.payload:
            return False
        try:
            return ToolName(observation.tool_name).is_proposal
        except ValueError:
            return False
