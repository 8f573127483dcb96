"""Proposal store: proposals, applied actions and the audit log.

Every mutation is a read-modify-write of a whole collection under that
collection's lock. Operations touching several collections take the locks in
a fixed order (proposals, applied actions, audit log), so concurrent callers
cannot deadlock. Reads go straight to storage without locking.
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from billsleuth.constants import (
    AGENT_ACTOR,
    APPLIED_ACTIONS_COLLECTION,
    AUDIT_ACTION_APPLIED,
    AUDIT_ACTION_ROLLED_BACK,
    AUDIT_LOG_COLLECTION,
    AUDIT_PROPOSAL_CREATED,
    AUDIT_PROPOSAL_REJECTED,
    OPERATOR_ACTOR,
    PROPOSALS_COLLECTION,
)
from billsleuth.errors import InvalidStateError, NotFoundError, ValidationError
from billsleuth.models import AppliedAction, AuditLogEntry, Proposal, ProposalType
from billsleuth.utils.storage import CollectionStorage

logger = logging.getLogger(__name__)


def _new_id(prefix: str, length: int = 12) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:length]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _find_index(records: list[dict[str, Any]], record_id: str) -> Optional[int]:
    for i, record in enumerate(records):
        if record.get("id") == record_id:
            return i
    return None


class ProposalStore:
    """Owns the proposal lifecycle: pending -> applied | rejected."""

    def __init__(
        self,
        storage: CollectionStorage,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the store.

        Args:
            storage: Durable collection storage
            clock: Optional time source (defaults to UTC now)
        """
        self.storage = storage
        self._clock = clock or _utcnow

        self._proposals_lock = threading.Lock()
        self._actions_lock = threading.Lock()
        self._audit_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(
        self,
        proposal_type: ProposalType,
        details: Union[BaseModel, dict[str, Any]],
        actor: str = AGENT_ACTOR,
    ) -> Proposal:
        """Create a pending proposal.

        Args:
            proposal_type: recovery_invoice, credit_correction or plan_change
            details: Details model or dict matching the proposal type
            actor: Who drafted the proposal

        Returns:
            The new proposal

        Raises:
            ValidationError: If the details do not fit the proposal type
        """
        if isinstance(details, BaseModel):
            details = details.model_dump()
        payload = {**details, "type": proposal_type}

        try:
            proposal = Proposal(
                id=_new_id("prop"),
                type=proposal_type,
                created_at=self._clock(),
                details=payload,
            )
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid {proposal_type} proposal",
                details=e.errors(include_url=False, include_context=False),
            ) from e

        with self._proposals_lock:
            records = self.storage.load(PROPOSALS_COLLECTION)
            records.append(proposal.model_dump(mode="json"))
            self.storage.save(PROPOSALS_COLLECTION, records)

            self._append_audit(
                AUDIT_PROPOSAL_CREATED,
                proposal.id,
                actor,
                {"type": proposal.type, "details": proposal.details.model_dump(mode="json")},
            )

        logger.info("Created %s proposal %s", proposal.type, proposal.id)
        return proposal

    def apply(self, proposal_id: str, approver: str = OPERATOR_ACTOR) -> AppliedAction:
        """Approve a pending proposal and record the applied action.

        Args:
            proposal_id: Proposal to apply
            approver: Identity of the approving human

        Returns:
            The frozen applied action

        Raises:
            NotFoundError: If the proposal does not exist
            InvalidStateError: If the proposal is not pending
        """
        with self._proposals_lock:
            records = self.storage.load(PROPOSALS_COLLECTION)
            index = _find_index(records, proposal_id)
            if index is None:
                raise NotFoundError("Proposal", proposal_id)

            proposal = Proposal.model_validate(records[index])
            if proposal.status != "pending":
                raise InvalidStateError(proposal_id, proposal.status, "apply")

            now = self._clock()
            proposal = proposal.model_copy(update={"status": "applied", "decided_at": now})
            action = AppliedAction(
                id=proposal.id,
                proposal=proposal,
                applied_at=now,
                applied_by=approver,
            )

            with self._actions_lock:
                actions = self.storage.load(APPLIED_ACTIONS_COLLECTION)
                if _find_index(actions, proposal_id) is not None:
                    raise InvalidStateError(proposal_id, "applied", "apply")
                actions.append(action.model_dump(mode="json"))
                # Action first: a crash before the status write leaves a
                # record that blocks a second apply.
                self.storage.save(APPLIED_ACTIONS_COLLECTION, actions)

                records[index] = proposal.model_dump(mode="json")
                self.storage.save(PROPOSALS_COLLECTION, records)

                self._append_audit(
                    AUDIT_ACTION_APPLIED,
                    proposal_id,
                    approver,
                    {"proposal_id": proposal_id, "type": proposal.type},
                )

        logger.info("Applied proposal %s (approved by %s)", proposal_id, approver)
        return action

    def reject(
        self,
        proposal_id: str,
        actor: str = OPERATOR_ACTOR,
        reason: Optional[str] = None,
    ) -> Proposal:
        """Reject a pending proposal.

        Raises:
            NotFoundError: If the proposal does not exist
            InvalidStateError: If the proposal is not pending
        """
        with self._proposals_lock:
            records = self.storage.load(PROPOSALS_COLLECTION)
            index = _find_index(records, proposal_id)
            if index is None:
                raise NotFoundError("Proposal", proposal_id)

            proposal = Proposal.model_validate(records[index])
            if proposal.status != "pending":
                raise InvalidStateError(proposal_id, proposal.status, "reject")

            proposal = proposal.model_copy(
                update={"status": "rejected", "decided_at": self._clock()}
            )
            records[index] = proposal.model_dump(mode="json")
            self.storage.save(PROPOSALS_COLLECTION, records)

            self._append_audit(
                AUDIT_PROPOSAL_REJECTED,
                proposal_id,
                actor,
                {"reason": reason or "No reason provided"},
            )

        logger.info("Rejected proposal %s", proposal_id)
        return proposal

    def rollback(
        self,
        applied_id: str,
        reason: Optional[str] = None,
        actor: str = OPERATOR_ACTOR,
    ) -> AppliedAction:
        """Mark an applied action as rolled back.

        The source proposal keeps its 'applied' status.

        Raises:
            NotFoundError: If no applied action has this id (nothing is audited)
            InvalidStateError: If the action was already rolled back
        """
        with self._actions_lock:
            actions = self.storage.load(APPLIED_ACTIONS_COLLECTION)
            index = _find_index(actions, applied_id)
            if index is None:
                raise NotFoundError("Applied action", applied_id)

            action = AppliedAction.model_validate(actions[index])
            if action.rolled_back:
                raise InvalidStateError(applied_id, "rolled_back", "roll back")

            action = action.model_copy(
                update={"rolled_back_at": self._clock(), "rollback_reason": reason}
            )
            actions[index] = action.model_dump(mode="json")
            self.storage.save(APPLIED_ACTIONS_COLLECTION, actions)

            self._append_audit(
                AUDIT_ACTION_ROLLED_BACK,
                applied_id,
                actor,
                {"reason": reason or "No reason provided"},
            )

        logger.info("Rolled back applied action %s", applied_id)
        return action

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_proposals(self) -> list[Proposal]:
        return [Proposal.model_validate(r) for r in self.storage.load(PROPOSALS_COLLECTION)]

    def get_proposal(self, proposal_id: str) -> Proposal:
        for proposal in self.list_proposals():
            if proposal.id == proposal_id:
                return proposal
        raise NotFoundError("Proposal", proposal_id)

    def list_applied_actions(self) -> list[AppliedAction]:
        return [
            AppliedAction.model_validate(r)
            for r in self.storage.load(APPLIED_ACTIONS_COLLECTION)
        ]

    def get_applied_action(self, applied_id: str) -> AppliedAction:
        for action in self.list_applied_actions():
            if action.id == applied_id:
                return action
        raise NotFoundError("Applied action", applied_id)

    def list_audit_entries(self) -> list[AuditLogEntry]:
        return [
            AuditLogEntry.model_validate(r) for r in self.storage.load(AUDIT_LOG_COLLECTION)
        ]

    def _append_audit(
        self, action_type: str, subject_id: str, actor: str, details: dict[str, Any]
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            id=_new_id("audit", 32),
            timestamp=self._clock(),
            action_type=action_type,
            subject_id=subject_id,
            actor=actor,
            details=details,
        )
        with self._audit_lock:
            entries = self.storage.load(AUDIT_LOG_COLLECTION)
            entries.append(entry.model_dump(mode="json"))
            self.storage.save(AUDIT_LOG_COLLECTION, entries)
        return entry
