"""Tool registry: the fixed set of operations the agent may call."""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from billsleuth.conversation import Observation, ToolCall
from billsleuth.errors import NotFoundError, ValidationError
from billsleuth.tools.dataset import Dataset
from billsleuth.tools.proposals import ProposalStore
from billsleuth.tools.schemas import (
    ConvertCurrencyArgs,
    LoadPlanArgs,
    ProposeCreditCorrectionArgs,
    ProposePlanChangeArgs,
    ProposeRecoveryInvoiceArgs,
    QueryInvoicesArgs,
)

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    """Every tool the agent can call. Wire names are the enum values."""

    LOAD_PLAN = "load_plan"
    QUERY_INVOICES = "query_invoices"
    CONVERT_CURRENCY = "convert_currency"
    PROPOSE_RECOVERY_INVOICE = "propose_recovery_invoice"
    PROPOSE_CREDIT_CORRECTION = "propose_credit_correction"
    PROPOSE_PLAN_CHANGE = "propose_plan_change"

    @property
    def is_proposal(self) -> bool:
        return self.value.startswith("propose_")


@dataclass(frozen=True)
class ToolSpec:
    name: ToolName
    description: str
    args_model: type[BaseModel]
    handler: Callable[[Any], dict[str, Any]]


def _not_found(message: str, suggestion: str, **extra: Any) -> dict[str, Any]:
    return {"error": message, "not_found": True, "suggestion": suggestion, **extra}


class ToolRegistry:
    """Maps tool names to argument schemas and handlers."""

    def __init__(self, dataset: Dataset, store: ProposalStore):
        """Initialize registry.

        Args:
            dataset: Read-only billing corpus
            store: Proposal store written by the propose_* tools
        """
        self.dataset = dataset
        self.store = store
        self._tools: dict[ToolName, ToolSpec] = {
            spec.name: spec for spec in self._build_specs()
        }

    def _build_specs(self) -> list[ToolSpec]:
        return [
            ToolSpec(
                ToolName.LOAD_PLAN,
                "Retrieve billing plan details by plan ID: contract terms, total value, "
                "billing cadence, start date, entitlements and amendment links. Essential "
                "for comparing expected vs actual invoices.",
                LoadPlanArgs,
                self._load_plan,
            ),
            ToolSpec(
                ToolName.QUERY_INVOICES,
                "Filter invoices by plan_id, customer_name, or issue date range. Returns "
                "matching invoices with amounts, dates, status and any credit memos. An "
                "empty result is valid.",
                QueryInvoicesArgs,
                self._query_invoices,
            ),
            ToolSpec(
                ToolName.CONVERT_CURRENCY,
                "Convert an amount between currencies using the historical exchange rate "
                "for an exact date. Use the invoice issue_date for accurate conversion.",
                ConvertCurrencyArgs,
                self._convert_currency,
            ),
            ToolSpec(
                ToolName.PROPOSE_RECOVERY_INVOICE,
                "Draft a recovery invoice for missing or underbilled revenue. This does NOT "
                "issue the invoice; it creates a proposal for human approval. Cite invoice "
                "IDs, dates and calculations in the justification.",
                ProposeRecoveryInvoiceArgs,
                self._propose("recovery_invoice"),
            ),
            ToolSpec(
                ToolName.PROPOSE_CREDIT_CORRECTION,
                "Draft a credit correcting an overbilled invoice (e.g. FX errors, duplicate "
                "billing). This does NOT issue the credit; it creates a proposal for human "
                "approval.",
                ProposeCreditCorrectionArgs,
                self._propose("credit_correction"),
            ),
            ToolSpec(
                ToolName.PROPOSE_PLAN_CHANGE,
                "Draft an amendment to a billing plan (total value, cadence, or "
                "entitlements). This does NOT change the plan; it creates a proposal for "
                "human approval.",
                ProposePlanChangeArgs,
                self._propose("plan_change"),
            ),
        ]

    def names(self) -> list[str]:
        return [name.value for name in self._tools]

    def definitions(self) -> list[dict]:
        """Get tool definitions for the LLM.

        Returns:
            List of tool definitions in OpenAI function format
        """
        return [
            {
                "type": "function",
                "function": {
                    "name": spec.name.value,
                    "description": spec.description,
                    "parameters": spec.args_model.model_json_schema(),
                },
            }
            for spec in self._tools.values()
        ]

    def dispatch(self, call: ToolCall) -> Observation:
        """Execute a tool call.

        Unknown tools, undecodable arguments and schema failures come back as
        error observations. Unexpected handler faults propagate.

        Args:
            call: Tool call from the model

        Returns:
            Observation paired with the call id
        """
        try:
            name = ToolName(call.name)
        except ValueError:
            return self._error(call, f"Unknown tool: {call.name}", available=self.names())

        arguments = call.arguments
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError as e:
                return self._error(call, f"Arguments are not valid JSON: {e}")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            return self._error(call, "Arguments must be a JSON object")

        spec = self._tools[name]
        try:
            args = spec.args_model.model_validate(arguments)
        except PydanticValidationError as e:
            return self._error(
                call,
                f"Invalid arguments for {name.value}",
                details=e.errors(include_url=False, include_context=False),
            )

        logger.debug("Dispatching %s (%s)", name.value, call.id)
        try:
            payload = spec.handler(args)
        except ValidationError as e:
            return self._error(call, str(e), details=e.details)
        except NotFoundError as e:
            payload = _not_found(str(e), "Verify the identifier is correct")

        return Observation(call_id=call.id, tool_name=name.value, payload=payload)

    def _error(self, call: ToolCall, message: str, **extra: Any) -> Observation:
        logger.info("Tool call %s (%s) rejected: %s", call.name, call.id, message)
        payload = {"error": message, "tool": call.name, **extra}
        return Observation(call_id=call.id, tool_name=call.name, payload=payload, is_error=True)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _load_plan(self, args: LoadPlanArgs) -> dict[str, Any]:
        plan = self.dataset.get_plan(args.plan_id)
        if plan is None:
            return _not_found(
                f"Plan {args.plan_id} not found",
                "Verify the plan_id is correct or check if this is an orphan invoice",
                plan_id=args.plan_id,
            )

        amended_by = [p.plan_id for p in self.dataset.list_plans() if p.amends == plan.plan_id]
        return {
            "found": True,
            "plan": plan.model_dump(mode="json"),
            "amended_by": amended_by,
        }

    def _query_invoices(self, args: QueryInvoicesArgs) -> dict[str, Any]:
        invoices = self.dataset.query_invoices(
            plan_id=args.plan_id,
            customer_name=args.customer_name,
            date_from=args.date_from,
            date_to=args.date_to,
        )

        rows = []
        for inv in invoices:
            row = inv.model_dump(mode="json")
            memos = self.dataset.credit_memos_for_invoice(inv.invoice_id)
            if memos:
                row["credit_memos"] = [m.model_dump(mode="json") for m in memos]
            rows.append(row)

        return {
            "count": len(rows),
            "filters_applied": args.model_dump(mode="json", exclude_none=True),
            "invoices": rows,
        }

    def _convert_currency(self, args: ConvertCurrencyArgs) -> dict[str, Any]:
        result = {
            "original_amount": args.amount,
            "from_currency": args.from_currency,
            "to_currency": args.to_currency,
            "date": args.date.isoformat(),
        }

        if args.from_currency == args.to_currency:
            return {
                **result,
                "rate": 1.0,
                "converted_amount": round(args.amount, 2),
                "note": "Same currency - no conversion required",
            }

        rate = self.dataset.get_exchange_rate(args.from_currency, args.to_currency, args.date)
        if rate is None:
            return _not_found(
                f"No FX rate found for {args.from_currency}->{args.to_currency} "
                f"on {args.date.isoformat()}",
                "Check the date or whether the currency pair is in the rate table",
                **result,
            )

        converted = round(args.amount * rate, 2)
        return {
            **result,
            "rate": rate,
            "converted_amount": converted,
            "calculation": (
                f"{args.amount} {args.from_currency} x {rate} = "
                f"{converted:.2f} {args.to_currency}"
            ),
        }

    def _propose(self, proposal_type: str) -> Callable[[BaseModel], dict[str, Any]]:
        def handler(args: BaseModel) -> dict[str, Any]:
            proposal = self.store.create(proposal_type, args)
            return {
                "success": True,
                "proposal_id": proposal.id,
                "type": proposal.type,
                "status": proposal.status,
                "message": "Proposal created. Awaiting human approval.",
                "details": proposal.details.model_dump(mode="json", exclude={"type"}),
            }

        return handler
