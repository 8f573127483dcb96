"""Argument schemas for the agent's tools."""

import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from billsleuth.models import (
    CreditCorrectionFields,
    CurrencyCode,
    PlanChangeFields,
    RecoveryInvoiceFields,
)


class LoadPlanArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    plan_id: str = Field(min_length=1, description="The billing plan ID (e.g. 'C-1001', 'C-1007-A1')")


class QueryInvoicesArgs(BaseModel):
    """All filters are optional; no filters returns every invoice."""

    model_config = ConfigDict(extra="forbid")

    plan_id: Optional[str] = Field(None, description="Filter by billing plan ID")
    customer_name: Optional[str] = Field(
        None, description="Filter by customer name (case-insensitive substring)"
    )
    date_from: Optional[dt.date] = Field(None, description="Earliest issue date, inclusive (YYYY-MM-DD)")
    date_to: Optional[dt.date] = Field(None, description="Latest issue date, inclusive (YYYY-MM-DD)")

    @model_validator(mode="after")
    def check_range(self) -> "QueryInvoicesArgs":
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to is before date_from")
        return self


class ConvertCurrencyArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: float = Field(description="Amount to convert")
    from_currency: CurrencyCode = Field(description="Source currency code (e.g. 'EUR')")
    to_currency: CurrencyCode = Field(description="Target currency code (e.g. 'USD')")
    date: dt.date = Field(description="Date of the historical rate (YYYY-MM-DD), usually the invoice issue date")


class ProposeRecoveryInvoiceArgs(RecoveryInvoiceFields):
    model_config = ConfigDict(extra="forbid")


class ProposeCreditCorrectionArgs(CreditCorrectionFields):
    model_config = ConfigDict(extra="forbid")


class ProposePlanChangeArgs(PlanChangeFields):
    model_config = ConfigDict(extra="forbid")
