"""System prompt builder with Anthropic prompt caching support."""

from dataclasses import dataclass
from typing import Optional

from billsleuth.errors import ValidationError


@dataclass(frozen=True)
class Mission:
    """A predefined investigation request."""

    id: str
    label: str
    description: str
    query: str


MISSIONS: dict[str, Mission] = {
    m.id: m
    for m in [
        Mission(
            "acme-billing",
            "Investigate ACME Corp Billing",
            "Check ACME Corp (C-1001) for missing invoices and anomalies",
            "Investigate plan C-1001 for ACME Corp. Check for missing invoices, "
            "overbilling, or any billing anomalies.",
        ),
        Mission(
            "missing-invoices",
            "Find Missing Invoices",
            "Scan all plans for missing invoices based on cadence",
            "Analyze all billing plans and find any missing invoices. Check each plan's "
            "cadence and verify all expected invoices are present.",
        ),
        Mission(
            "currency-errors",
            "Check Currency Conversions",
            "Verify FX conversions are correct",
            "Check all invoices for currency conversion errors. Verify EUR to USD "
            "conversions using the correct exchange rates.",
        ),
        Mission(
            "orphan-invoices",
            "Identify Orphan Invoices",
            "Find invoices without valid plan references",
            "Find all orphan invoices - invoices that have no plan_id or reference "
            "invalid plans.",
        ),
        Mission(
            "globex-investigation",
            "Investigate Globex Ltd",
            "Review Globex Ltd billing and amendments",
            "Investigate Globex Ltd billing. Check plan C-1007 and its amendments for "
            "any anomalies or discrepancies.",
        ),
        Mission(
            "overbilling-check",
            "Detect Overbilling",
            "Find invoices exceeding plan values",
            "Check all invoices for overbilling. Find any invoices where the amount "
            "exceeds what should be charged based on the plan.",
        ),
    ]
}


def build_mission_message(
    mission_id: str,
    plan_id: Optional[str] = None,
    customer_name: Optional[str] = None,
) -> str:
    """Turn a mission id into a user message.

    Args:
        mission_id: Key of MISSIONS
        plan_id: Optional plan to focus on
        customer_name: Optional customer to focus on

    Returns:
        The request text

    Raises:
        ValidationError: If the mission is unknown
    """
    mission = MISSIONS.get(mission_id)
    if mission is None:
        raise ValidationError(
            f"Unknown mission: {mission_id}",
            details=[{"field": "mission", "available": sorted(MISSIONS)}],
        )

    message = mission.query
    focus = []
    if plan_id:
        focus.append(f"plan {plan_id}")
    if customer_name:
        focus.append(f"customer {customer_name}")
    if focus:
        message += f" Focus on {' and '.join(focus)}."
    return message


class SystemPromptBuilder:
    """Builds the investigator system prompt with caching support for Anthropic."""

    def __init__(self, tool_names: list[str]):
        """Initialize system prompt builder.

        Args:
            tool_names: Tool wire names the agent can call
        """
        self.tool_names = tool_names

    def build_system_messages(self) -> list[dict]:
        """Build system message blocks with cache_control for Anthropic.

        Returns:
            List of system message blocks with cache_control markers
        """
        blocks = [
            self._build_core_identity(),
            self._build_investigation_guidelines(),
            self._build_constraints(),
        ]
        return [
            {"type": "text", "text": text, "cache_control": {"type": "ephemeral"}}
            for text in blocks
        ]

    def _build_core_identity(self) -> str:
        tools = "\n".join(f"- {name}" for name in self.tool_names)
        return f"""You are a financial detective AI agent specializing in revenue leakage detection and billing reconciliation.

## Your Role
You autonomously investigate billing anomalies by:
1. Analyzing billing plans and invoices
2. Identifying discrepancies (missing invoices, overbilling, underbilling, orphans, amendment tracking issues)
3. Proposing corrective actions with clear evidence and reasoning

## Available Tools
{tools}

Query tools read the billing data. The propose_* tools only draft proposals; a human decides whether they are applied."""

    def _build_investigation_guidelines(self) -> str:
        return """## Investigation Principles
1. **Evidence-based:** Always cite specific data (invoice IDs, amounts, dates)
2. **Multi-step reasoning:** Break down complex problems step by step
3. **Currency-aware:** Use convert_currency when comparing cross-currency amounts, with the invoice issue date
4. **Amendment-tracking:** Check for plan amendments (e.g., C-1007 -> C-1007-A1) via the amended_by field
5. **Clear explanations:** Justify every proposal with calculations and evidence

## Anomaly Types to Detect
1. **Missing invoices:** Expected monthly/quarterly/annual invoice not found based on billing cadence
2. **Overbilling:** Invoice amount exceeds expected amount (check FX rates for currency mismatches)
3. **Underbilling:** Invoice amount less than expected amount
4. **Orphan invoices:** Invoice with no plan_id or an invalid plan reference
5. **Amendment issues:** Invoices billed against superseded plans

## Response Format
When you detect an anomaly:
1. State the finding clearly with specific evidence
2. Show your calculations and reasoning
3. Cite exact invoice IDs, amounts, and dates
4. Propose a corrective action if appropriate
5. Explain why this action fixes the issue"""

    def _build_constraints(self) -> str:
        return """## Important Constraints
- You CANNOT directly apply actions; the billing data is read-only
- All proposals require human approval before they take effect
- A tool result containing "error" means the call was rejected; fix the arguments and try again
- A result with "not_found" is a normal finding, not a failure
- Always think step-by-step and show your reasoning

Think carefully and cite evidence for every conclusion."""
