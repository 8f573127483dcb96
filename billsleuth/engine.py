"""Engine: wires the dataset, proposal store, tools and model together."""

import logging
import threading
from typing import Iterator, Optional

from billsleuth.config import Config
from billsleuth.constants import OPERATOR_ACTOR
from billsleuth.errors import ConfigError, ValidationError
from billsleuth.handlers.investigate import Fragment, InvestigationHandler, RunResult
from billsleuth.handlers.streaming import StreamingAdapter
from billsleuth.llm import LLM, ReasoningModel
from billsleuth.models import AppliedAction, AuditLogEntry, Proposal
from billsleuth.system_prompt import SystemPromptBuilder, build_mission_message
from billsleuth.tools.dataset import Dataset
from billsleuth.tools.proposals import ProposalStore
from billsleuth.tools.registry import ToolRegistry
from billsleuth.utils.storage import CollectionStorage, JsonFileStorage

logger = logging.getLogger(__name__)


def _require(value: Optional[str], name: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"Missing or empty {name}", details=[{"field": name}])
    return value.strip()


class BillSleuthEngine:
    """Entry points for chatting with the agent and deciding on its proposals."""

    def __init__(
        self,
        config: Config,
        llm: Optional[ReasoningModel] = None,
        dataset: Optional[Dataset] = None,
        storage: Optional[CollectionStorage] = None,
    ):
        """Initialize the engine.

        Args:
            config: Configuration object
            llm: Optional reasoning model (built from config on first chat otherwise)
            dataset: Optional dataset (loaded from config.data_dir otherwise)
            storage: Optional collection storage (JSON files in the sandbox otherwise)
        """
        self.config = config
        self.dataset = dataset or Dataset(config.data_dir)
        self.store = ProposalStore(storage or JsonFileStorage(config.sandbox_dir))
        self.registry = ToolRegistry(self.dataset, self.store)
        self.system_prompt = SystemPromptBuilder(self.registry.names()).build_system_messages()

        self._llm = llm
        self._llm_lock = threading.Lock()

    @property
    def llm(self) -> ReasoningModel:
        if self._llm is None:
            with self._llm_lock:
                if self._llm is None:
                    self._llm = self._build_llm()
        return self._llm

    def _build_llm(self) -> LLM:
        if not self.config.anthropic_api_key:
            raise ConfigError("No Anthropic API key found. Set ANTHROPIC_API_KEY in .env")
        try:
            descriptor = LLM.parse_model_string(
                self.config.default_model, temperature=self.config.temperature
            )
        except ValueError as e:
            raise ConfigError(str(e)) from e
        logger.info("Using model %s", descriptor.name)
        return LLM(descriptor, self.config.anthropic_api_key)

    def _handler(self, stream_tokens: bool = True) -> InvestigationHandler:
        return InvestigationHandler(
            model=self.llm,
            registry=self.registry,
            system_prompt=self.system_prompt,
            max_iterations=self.config.max_iterations,
            sandbox_dir=self.config.sandbox_dir if self.config.transcripts else None,
            stream_tokens=stream_tokens,
        )

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def chat(self, message: str) -> RunResult:
        """Run an investigation and return the aggregate result.

        Raises:
            ValidationError: If the message is blank
            ExecutionError: If the run aborts
        """
        message = _require(message, "message")
        return self._handler(stream_tokens=False).run(message)

    def chat_stream(self, message: str) -> Iterator[Fragment]:
        """Run an investigation as a fragment stream ending in done or error.

        Raises:
            ValidationError: If the message is blank (before any fragment)
        """
        message = _require(message, "message")
        adapter = StreamingAdapter(self._handler(), buffer_size=self.config.stream_buffer)
        return adapter.stream(message)

    def mission_message(
        self,
        mission: str,
        plan_id: Optional[str] = None,
        customer_name: Optional[str] = None,
    ) -> str:
        return build_mission_message(_require(mission, "mission"), plan_id, customer_name)

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def list_proposals(self) -> list[Proposal]:
        return self.store.list_proposals()

    def apply(self, proposal_id: str, approver: str = OPERATOR_ACTOR) -> AppliedAction:
        return self.store.apply(
            _require(proposal_id, "proposal_id"), approver=_require(approver, "approver")
        )

    def reject(
        self, proposal_id: str, actor: str = OPERATOR_ACTOR, reason: Optional[str] = None
    ) -> Proposal:
        return self.store.reject(
            _require(proposal_id, "proposal_id"), actor=_require(actor, "actor"), reason=reason
        )

    def rollback(
        self, applied_id: str, reason: Optional[str] = None, actor: str = OPERATOR_ACTOR
    ) -> AppliedAction:
        return self.store.rollback(
            _require(applied_id, "applied_id"), reason=reason, actor=_require(actor, "actor")
        )

    def list_applied_actions(self) -> list[AppliedAction]:
        return self.store.list_applied_actions()

    def list_audit_entries(self) -> list[AuditLogEntry]:
        return self.store.list_audit_entries()
