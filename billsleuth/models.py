"""Ledger records owned by the proposal store."""

from datetime import date, datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator

ProposalType = Literal["recovery_invoice", "credit_correction", "plan_change"]
ProposalStatus = Literal["pending", "applied", "rejected"]


def _normalize_currency(value: str) -> str:
    code = value.strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValueError("currency must be a 3-letter ISO code")
    return code


CurrencyCode = Annotated[str, AfterValidator(_normalize_currency)]


class RecoveryInvoiceFields(BaseModel):
    """Fields for a recovery invoice covering missing or underbilled revenue."""

    plan_id: str = Field(min_length=1, description="Billing plan the invoice recovers revenue for")
    amount: float = Field(gt=0, description="Amount to invoice")
    currency: CurrencyCode = Field(description="Currency code (e.g. 'USD', 'EUR')")
    period_start: Optional[date] = Field(None, description="First day of the unbilled period (YYYY-MM-DD)")
    period_end: Optional[date] = Field(None, description="Last day of the unbilled period (YYYY-MM-DD)")
    justification: str = Field(
        min_length=1,
        description="Evidence: what was missing, why, and how the amount was calculated",
    )

    @model_validator(mode="after")
    def check_period(self) -> "RecoveryInvoiceFields":
        if self.period_start and self.period_end and self.period_end < self.period_start:
            raise ValueError("period_end is before period_start")
        return self


class CreditCorrectionFields(BaseModel):
    """Fields for a credit correcting an overbilled invoice."""

    invoice_id: str = Field(min_length=1, description="Invoice that was overbilled")
    amount: float = Field(gt=0, description="Credit amount (positive number)")
    currency: CurrencyCode = Field(description="Currency code (e.g. 'USD', 'EUR')")
    justification: str = Field(
        min_length=1,
        description="Evidence: what was overbilled, why, and how the credit was calculated",
    )


class PlanChanges(BaseModel):
    """Requested changes to a billing plan's terms."""

    total_value: Optional[float] = Field(None, gt=0, description="New total contract value")
    cadence: Optional[Literal["monthly", "quarterly", "annual"]] = Field(
        None, description="New billing cadence"
    )
    entitlements: Optional[list[str]] = Field(None, description="New list of entitlements")

    @model_validator(mode="after")
    def require_change(self) -> "PlanChanges":
        if self.total_value is None and self.cadence is None and self.entitlements is None:
            raise ValueError("at least one of total_value, cadence, entitlements is required")
        return self


class PlanChangeFields(BaseModel):
    """Fields for amending a billing plan."""

    plan_id: str = Field(min_length=1, description="Billing plan to amend")
    changes: PlanChanges = Field(description="Changes to apply to the plan")
    justification: str = Field(min_length=1, description="Evidence: why this amendment is needed")


class RecoveryInvoiceDetails(RecoveryInvoiceFields):
    type: Literal["recovery_invoice"] = "recovery_invoice"


class CreditCorrectionDetails(CreditCorrectionFields):
    type: Literal["credit_correction"] = "credit_correction"


class PlanChangeDetails(PlanChangeFields):
    type: Literal["plan_change"] = "plan_change"


ProposalDetails = Annotated[
    Union[RecoveryInvoiceDetails, CreditCorrectionDetails, PlanChangeDetails],
    Field(discriminator="type"),
]


class Proposal(BaseModel):
    """A drafted corrective action awaiting a human decision."""

    id: str
    type: ProposalType
    status: ProposalStatus = "pending"
    created_at: datetime
    decided_at: Optional[datetime] = None
    details: ProposalDetails

    @model_validator(mode="after")
    def details_match_type(self) -> "Proposal":
        if self.details.type != self.type:
            raise ValueError(
                f"details of type '{self.details.type}' do not match proposal type '{self.type}'"
            )
        return self

    @property
    def subject_id(self) -> str:
        """Plan or invoice the proposal refers to."""
        if isinstance(self.details, CreditCorrectionDetails):
            return self.details.invoice_id
        return self.details.plan_id


class AppliedAction(BaseModel):
    """A proposal frozen at approval time."""

    id: str
    proposal: Proposal
    applied_at: datetime
    applied_by: str
    rolled_back_at: Optional[datetime] = None
    rollback_reason: Optional[str] = None

    @property
    def rolled_back(self) -> bool:
        return self.rolled_back_at is not None


class AuditLogEntry(BaseModel):
    """An immutable audit fact."""

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    action_type: str
    subject_id: str
    actor: str
    details: dict[str, Any] = Field(default_factory=dict)
