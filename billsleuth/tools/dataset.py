"""Read-only access to the billing corpus (plans, invoices, credit memos, FX rates)."""

import datetime as dt
import json
import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from billsleuth.constants import DATA_FILES

logger = logging.getLogger(__name__)


class BillingPlan(BaseModel):
    """A customer billing plan (contract)."""

    plan_id: str
    customer_name: str
    total_value: float
    currency: str
    cadence: str = Field(description="monthly, quarterly or annual")
    start_date: dt.date
    entitlements: list[str] = Field(default_factory=list)
    notes: Optional[str] = None
    amends: Optional[str] = Field(None, description="Parent plan id when this plan is an amendment")


class Invoice(BaseModel):
    """An issued invoice. Orphan invoices carry no plan_id."""

    invoice_id: str
    plan_id: Optional[str] = None
    customer_name: str
    issue_date: dt.date
    due_date: dt.date
    amount_invoiced: float
    currency: str
    status: str
    description: str = ""


class CreditMemo(BaseModel):
    """A credit issued against an invoice."""

    memo_id: str
    plan_id: Optional[str] = None
    invoice_id: str
    amount: float
    currency: str
    issue_date: dt.date
    reason: str = ""


class ExchangeRate(BaseModel):
    """Historical rate for one currency pair on one date."""

    date: dt.date
    from_currency: str
    to_currency: str
    rate: float


class Dataset:
    """In-memory view of the billing corpus.

    Files are read once on first access and never written back.
    """

    def __init__(self, data_dir: Optional[Path] = None):
        """Initialize dataset.

        Args:
            data_dir: Directory holding the corpus JSON files
        """
        self.data_dir = data_dir
        self._lock = threading.Lock()
        self._loaded = False
        self._plans: dict[str, BillingPlan] = {}
        self._invoices: list[Invoice] = []
        self._credit_memos: list[CreditMemo] = []
        self._rates: dict[tuple[str, str, dt.date], float] = {}

    @classmethod
    def from_records(
        cls,
        plans: list[dict],
        invoices: list[dict],
        credit_memos: Optional[list[dict]] = None,
        exchange_rates: Optional[list[dict]] = None,
    ) -> "Dataset":
        """Build a dataset from in-memory records (no files involved)."""
        dataset = cls()
        dataset._populate(plans, invoices, credit_memos or [], exchange_rates or [])
        return dataset

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return

        with self._lock:
            if self._loaded:
                return
            if self.data_dir is None:
                raise RuntimeError("Dataset has no data directory and no records")

            raw = {key: self._read_file(name) for key, name in DATA_FILES.items()}
            self._populate(
                raw["plans"], raw["invoices"], raw["credit_memos"], raw["exchange_rates"]
            )
            logger.info(
                "Loaded corpus from %s: %d plans, %d invoices, %d credit memos, %d rates",
                self.data_dir,
                len(self._plans),
                len(self._invoices),
                len(self._credit_memos),
                len(self._rates),
            )

    def _read_file(self, name: str) -> list[dict]:
        file_path = self.data_dir / name
        if not file_path.exists():
            logger.warning("Corpus file missing, treating as empty: %s", file_path)
            return []

        with open(file_path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _populate(
        self,
        plans: list[dict],
        invoices: list[dict],
        credit_memos: list[dict],
        exchange_rates: list[dict],
    ) -> None:
        self._plans = {p.plan_id: p for p in (BillingPlan(**r) for r in plans)}
        self._invoices = [Invoice(**r) for r in invoices]
        self._credit_memos = [CreditMemo(**r) for r in credit_memos]

        self._rates = {}
        for r in exchange_rates:
            rate = ExchangeRate(**r)
            self._rates[(rate.from_currency, rate.to_currency, rate.date)] = rate.rate

        self._loaded = True

    def list_plans(self) -> list[BillingPlan]:
        self._ensure_loaded()
        return list(self._plans.values())

    def get_plan(self, plan_id: str) -> Optional[BillingPlan]:
        """Get a billing plan by id.

        Args:
            plan_id: Plan identifier (e.g. "C-1001", "C-1007-A1")

        Returns:
            The plan, or None if absent
        """
        self._ensure_loaded()
        return self._plans.get(plan_id)

    def query_invoices(
        self,
        plan_id: Optional[str] = None,
        customer_name: Optional[str] = None,
        date_from: Optional[dt.date] = None,
        date_to: Optional[dt.date] = None,
    ) -> list[Invoice]:
        """Filter invoices.

        Args:
            plan_id: Exact plan id match
            customer_name: Case-insensitive substring of the customer name
            date_from: Earliest issue date (inclusive)
            date_to: Latest issue date (inclusive)

        Returns:
            Matching invoices in corpus order (possibly empty)
        """
        self._ensure_loaded()
        invoices = self._invoices

        if plan_id:
            invoices = [inv for inv in invoices if inv.plan_id == plan_id]
        if customer_name:
            needle = customer_name.lower()
            invoices = [inv for inv in invoices if needle in inv.customer_name.lower()]
        if date_from:
            invoices = [inv for inv in invoices if inv.issue_date >= date_from]
        if date_to:
            invoices = [inv for inv in invoices if inv.issue_date <= date_to]

        return list(invoices)

    def credit_memos_for_invoice(self, invoice_id: str) -> list[CreditMemo]:
        self._ensure_loaded()
        return [memo for memo in self._credit_memos if memo.invoice_id == invoice_id]

    def get_exchange_rate(
        self, from_currency: str, to_currency: str, on: dt.date
    ) -> Optional[float]:
        """Look up the historical rate for an exact currency pair and date.

        Returns:
            The rate, or None if the corpus has no such entry
        """
        self._ensure_loaded()
        return self._rates.get((from_currency, to_currency, on))
