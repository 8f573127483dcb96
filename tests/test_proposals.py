"""Tests for the proposal store lifecycle."""

import threading
from datetime import datetime, timezone

import pytest

from billsleuth.errors import InvalidStateError, NotFoundError, ValidationError
from billsleuth.tools.proposals import ProposalStore
from billsleuth.utils.storage import JsonFileStorage, MemoryStorage

RECOVERY = {
    "plan_id": "C-1001",
    "amount": 10000.0,
    "currency": "usd",
    "period_start": "2024-09-01",
    "period_end": "2024-09-30",
    "justification": "No invoice issued for September 2024 on a 10,000 USD monthly plan",
}


def _audit_types(store):
    return [entry.action_type for entry in store.list_audit_entries()]


def test_create_pending_proposal(store):
    """Test creating a proposal records it as pending and audits it."""
    proposal = store.create("recovery_invoice", RECOVERY)

    assert proposal.id.startswith("prop-")
    assert proposal.status == "pending"
    assert proposal.decided_at is None
    assert proposal.details.currency == "USD"
    assert proposal.subject_id == "C-1001"

    assert [p.id for p in store.list_proposals()] == [proposal.id]
    assert _audit_types(store) == ["proposal_created"]

    entry = store.list_audit_entries()[0]
    assert entry.subject_id == proposal.id
    assert entry.actor == "agent"


def test_create_rejects_invalid_details(store):
    """Test that invalid details raise ValidationError and store nothing."""
    with pytest.raises(ValidationError) as exc_info:
        store.create("recovery_invoice", {**RECOVERY, "amount": -5})

    assert exc_info.value.details
    assert store.list_proposals() == []
    assert store.list_audit_entries() == []


def test_create_plan_change_requires_a_change(store):
    """Test that a plan change without any change is rejected."""
    with pytest.raises(ValidationError):
        store.create(
            "plan_change",
            {"plan_id": "C-1007", "changes": {}, "justification": "nothing"},
        )


def test_apply_then_apply_again(store):
    """Test that a second apply fails and leaves state unchanged."""
    proposal = store.create("recovery_invoice", RECOVERY)

    action = store.apply(proposal.id, approver="alice")

    assert action.id == proposal.id
    assert action.applied_by == "alice"
    assert action.proposal.status == "applied"
    assert store.get_proposal(proposal.id).status == "applied"
    assert store.get_proposal(proposal.id).decided_at is not None

    with pytest.raises(InvalidStateError):
        store.apply(proposal.id)

    assert len(store.list_applied_actions()) == 1
    assert _audit_types(store) == ["proposal_created", "action_applied"]


def test_apply_unknown_proposal(store):
    """Test applying a proposal that does not exist."""
    with pytest.raises(NotFoundError):
        store.apply("prop-missing")

    assert store.list_audit_entries() == []


def test_reject(store):
    """Test rejecting a pending proposal."""
    proposal = store.create("recovery_invoice", RECOVERY)

    rejected = store.reject(proposal.id, actor="bob", reason="Already invoiced offline")

    assert rejected.status == "rejected"
    assert store.get_proposal(proposal.id).status == "rejected"

    entry = store.list_audit_entries()[-1]
    assert entry.action_type == "proposal_rejected"
    assert entry.actor == "bob"
    assert entry.details["reason"] == "Already invoiced offline"

    with pytest.raises(InvalidStateError):
        store.apply(proposal.id)
    with pytest.raises(InvalidStateError):
        store.reject(proposal.id)


def test_reject_unknown_proposal(store):
    """Test rejecting a proposal that does not exist."""
    with pytest.raises(NotFoundError):
        store.reject("prop-missing")


def test_rollback(store):
    """Test rolling back an applied action keeps the proposal applied."""
    proposal = store.create("recovery_invoice", RECOVERY)
    store.apply(proposal.id)

    action = store.rollback(proposal.id, reason="Customer disputed")

    assert action.rolled_back
    assert action.rollback_reason == "Customer disputed"
    assert store.get_applied_action(proposal.id).rolled_back
    assert store.get_proposal(proposal.id).status == "applied"

    entry = store.list_audit_entries()[-1]
    assert entry.action_type == "action_rolled_back"
    assert entry.details["reason"] == "Customer disputed"

    # The proposal was decided once; it cannot be applied again.
    with pytest.raises(InvalidStateError):
        store.apply(proposal.id)


def test_rollback_twice(store):
    """Test that rolling back twice fails."""
    proposal = store.create("recovery_invoice", RECOVERY)
    store.apply(proposal.id)
    store.rollback(proposal.id)

    with pytest.raises(InvalidStateError):
        store.rollback(proposal.id)

    assert _audit_types(store).count("action_rolled_back") == 1


def test_rollback_default_reason(store):
    """Test the audit entry when no rollback reason is given."""
    proposal = store.create("recovery_invoice", RECOVERY)
    store.apply(proposal.id)
    store.rollback(proposal.id)

    assert store.list_audit_entries()[-1].details["reason"] == "No reason provided"


def test_rollback_unknown_writes_no_audit(store):
    """Test that rolling back an unknown id writes no audit entry."""
    with pytest.raises(NotFoundError):
        store.rollback("prop-missing", reason="test")

    assert store.list_audit_entries() == []


def test_clock_is_used_for_timestamps():
    """Test that the injected clock stamps records."""
    moment = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    store = ProposalStore(MemoryStorage(), clock=lambda: moment)

    proposal = store.create("recovery_invoice", RECOVERY)
    action = store.apply(proposal.id)

    assert proposal.created_at == moment
    assert action.applied_at == moment
    assert all(entry.timestamp == moment for entry in store.list_audit_entries())


def test_concurrent_creates_lose_nothing(store):
    """Test that concurrent creates from many threads all persist."""
    created = []
    errors = []

    def worker(n):
        try:
            for i in range(10):
                proposal = store.create(
                    "credit_correction",
                    {
                        "invoice_id": f"INV-{n}-{i}",
                        "amount": 10.0,
                        "currency": "EUR",
                        "justification": "duplicate charge",
                    },
                )
                created.append(proposal.id)
        except Exception as e:  # pragma: no cover - surfaced by the assert below
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(created) == 80
    assert {p.id for p in store.list_proposals()} == set(created)
    assert len(store.list_audit_entries()) == 80


def test_concurrent_apply_only_one_wins(store):
    """Test that racing approvals apply a proposal exactly once."""
    proposal = store.create("recovery_invoice", RECOVERY)
    outcomes = []

    def worker():
        try:
            store.apply(proposal.id)
            outcomes.append("applied")
        except InvalidStateError:
            outcomes.append("rejected")

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("applied") == 1
    assert len(store.list_applied_actions()) == 1


def test_persists_across_store_instances(temp_dir):
    """Test that a JSON-backed store survives a restart."""
    first = ProposalStore(JsonFileStorage(temp_dir))
    proposal = first.create("recovery_invoice", RECOVERY)
    first.apply(proposal.id)

    second = ProposalStore(JsonFileStorage(temp_dir))

    assert second.get_proposal(proposal.id).status == "applied"
    assert second.get_applied_action(proposal.id).proposal.details.plan_id == "C-1001"
    assert len(second.list_audit_entries()) == 2
