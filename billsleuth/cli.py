"""CLI for BillSleuth."""

import json
import sys
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from billsleuth.config import Config
from billsleuth.constants import OPERATOR_ACTOR
from billsleuth.engine import BillSleuthEngine
from billsleuth.errors import (
    BillSleuthError,
    ConfigError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from billsleuth.handlers.investigate import Fragment
from billsleuth.llm import LLM
from billsleuth.system_prompt import MISSIONS
from billsleuth.utils.logging import configure_logging

app = typer.Typer(help="BillSleuth - Revenue Leakage Investigator")
console = Console()

EXIT_CODES = {
    ValidationError: 2,
    NotFoundError: 3,
    InvalidStateError: 4,
}


class ProposalStatusFilter(str, Enum):
    pending = "pending"
    applied = "applied"
    rejected = "rejected"


@contextmanager
def _errors() -> Iterator[None]:
    """Print typed failures in red and exit with a matching code."""
    try:
        yield
    except BillSleuthError as e:
        console.print(f"[red]Error: {e}[/red]")
        details = getattr(e, "details", None)
        if details:
            for issue in details:
                console.print(f"  - {issue}", markup=False)
        sys.exit(EXIT_CODES.get(type(e), 1))


def _load_engine(model: Optional[str] = None, require_model: bool = False) -> BillSleuthEngine:
    try:
        config = Config.load()
    except ConfigError as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)

    if model:
        config.default_model = model

    configure_logging(config.log_level)

    errors = config.validate(require_model=require_model)
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        sys.exit(1)

    return BillSleuthEngine(config)


def _render_fragment(fragment: Fragment) -> None:
    if fragment.kind == "token":
        console.print(fragment.content, end="", markup=False, highlight=False)
    elif fragment.kind == "tool_call":
        console.print(f"\n\n[dim]🔧 Using tool: {fragment.tool_name}[/dim]")
    elif fragment.kind == "tool_result":
        rendered = json.dumps(fragment.data, indent=2, default=str)
        console.print(Syntax(rendered, "json", theme="monokai"))
    elif fragment.kind == "done":
        console.print()
    else:
        console.print(f"\n[red]Error: {fragment.content}[/red]")


@app.command()
def chat(
    message: Optional[str] = typer.Argument(None, help="Investigation request"),
    mission: Optional[str] = typer.Option(
        None, "--mission", help="Run a predefined mission instead of a message"
    ),
    plan_id: Optional[str] = typer.Option(None, "--plan", help="Plan to focus a mission on"),
    customer: Optional[str] = typer.Option(
        None, "--customer", help="Customer to focus a mission on"
    ),
    json_output: bool = typer.Option(False, "--json", help="Print wire fragments as NDJSON"),
    no_stream: bool = typer.Option(False, "--no-stream", help="Print only the final result"),
    model: Optional[str] = typer.Option(
        None, "--model", "-m", help="Model to use (e.g., anthropic:claude-sonnet-4-5)"
    ),
) -> None:
    """Ask the agent to investigate billing data."""
    engine = _load_engine(model, require_model=True)

    with _errors():
        if mission:
            message = engine.mission_message(mission, plan_id=plan_id, customer_name=customer)
        if message is None:
            raise ValidationError("Provide a message or --mission")

        if no_stream:
            result = engine.chat(message)
            if json_output:
                typer.echo(json.dumps({
                    "answer": result.answer,
                    "status": result.status,
                    "rounds": result.rounds,
                    "proposal_ids": result.proposal_ids,
                    "log_dir": result.log_dir,
                }, default=str))
                return

            console.print(Markdown(result.answer or "_No answer produced._"))
            if result.status == "incomplete":
                console.print(
                    f"\n[yellow]Stopped after {result.rounds} rounds without a final answer.[/yellow]"
                )
            if result.proposal_ids:
                console.print(
                    f"\n[green]Proposals awaiting approval: {', '.join(result.proposal_ids)}[/green]"
                )
            if result.log_dir:
                console.print(f"\n[dim]Session logs: {result.log_dir}[/dim]")
            return

        failed = False
        for fragment in engine.chat_stream(message):
            if json_output:
                typer.echo(fragment.to_json())
            else:
                _render_fragment(fragment)
            failed = fragment.kind == "error"

        if failed:
            sys.exit(1)


@app.command()
def missions() -> None:
    """List predefined investigation missions."""
    table = Table(title="Missions")
    table.add_column("ID", style="cyan")
    table.add_column("Label")
    table.add_column("Description", style="dim")

    for mission in MISSIONS.values():
        table.add_row(mission.id, mission.label, mission.description)

    console.print(table)


@app.command()
def proposals(
    status: Optional[ProposalStatusFilter] = typer.Option(
        None, "--status", help="Only show pending, applied or rejected proposals"
    ),
) -> None:
    """List proposals drafted by the agent."""
    engine = _load_engine()

    table = Table(title="Proposals")
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Subject")
    table.add_column("Status")
    table.add_column("Created", style="dim")
    table.add_column("Justification", overflow="fold")

    for proposal in engine.list_proposals():
        if status and proposal.status != status.value:
            continue
        color = {"pending": "yellow", "applied": "green", "rejected": "red"}[proposal.status]
        table.add_row(
            proposal.id,
            proposal.type,
            proposal.subject_id,
            f"[{color}]{proposal.status}[/{color}]",
            proposal.created_at.isoformat(timespec="seconds"),
            proposal.details.justification,
        )

    console.print(table)


@app.command()
def apply(
    proposal_id: str = typer.Argument(..., help="Proposal to apply"),
    approver: str = typer.Option(OPERATOR_ACTOR, "--approver", help="Who approves"),
) -> None:
    """Approve a pending proposal."""
    engine = _load_engine()
    with _errors():
        action = engine.apply(proposal_id, approver=approver)
    console.print(f"[green]Applied {action.id} ({action.proposal.type}) by {action.applied_by}[/green]")


@app.command()
def reject(
    proposal_id: str = typer.Argument(..., help="Proposal to reject"),
    reason: Optional[str] = typer.Option(None, "--reason", help="Why it is rejected"),
    actor: str = typer.Option(OPERATOR_ACTOR, "--actor", help="Who rejects"),
) -> None:
    """Reject a pending proposal."""
    engine = _load_engine()
    with _errors():
        proposal = engine.reject(proposal_id, actor=actor, reason=reason)
    console.print(f"[yellow]Rejected {proposal.id}[/yellow]")


@app.command()
def rollback(
    applied_id: str = typer.Argument(..., help="Applied action to roll back"),
    reason: Optional[str] = typer.Option(None, "--reason", help="Why it is rolled back"),
    actor: str = typer.Option(OPERATOR_ACTOR, "--actor", help="Who rolls back"),
) -> None:
    """Mark an applied action as rolled back."""
    engine = _load_engine()
    with _errors():
        action = engine.rollback(applied_id, reason=reason, actor=actor)
    console.print(f"[yellow]Rolled back {action.id}[/yellow]")


@app.command()
def actions() -> None:
    """List applied actions."""
    engine = _load_engine()

    table = Table(title="Applied Actions")
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Subject")
    table.add_column("Applied by")
    table.add_column("Applied at", style="dim")
    table.add_column("Rolled back")

    for action in engine.list_applied_actions():
        rolled_back = (
            f"[red]{action.rolled_back_at.isoformat(timespec='seconds')}[/red]"
            if action.rolled_back
            else "-"
        )
        table.add_row(
            action.id,
            action.proposal.type,
            action.proposal.subject_id,
            action.applied_by,
            action.applied_at.isoformat(timespec="seconds"),
            rolled_back,
        )

    console.print(table)


@app.command()
def audit(
    limit: int = typer.Option(
        50, "--limit", "-n", min=1, help="Show the most recent N entries"
    ),
) -> None:
    """Show the audit log."""
    engine = _load_engine()
    entries = engine.list_audit_entries()

    table = Table(title="Audit Log")
    table.add_column("Timestamp", style="dim")
    table.add_column("Action")
    table.add_column("Subject", style="cyan")
    table.add_column("Actor")
    table.add_column("Details", overflow="fold")

    for entry in entries[-limit:]:
        table.add_row(
            entry.timestamp.isoformat(timespec="seconds"),
            entry.action_type,
            entry.subject_id,
            entry.actor,
            json.dumps(entry.details, default=str),
        )

    console.print(table)


@app.command()
def config() -> None:
    """Show current configuration and available models."""
    try:
        cfg = Config.load()
    except ConfigError as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)

    console.print(Panel(
        "\n".join(f"{k}: {v}" for k, v in cfg.to_dict().items()),
        title="Configuration",
        border_style="blue"
    ))
    console.print("\nAvailable models:")
    for model in LLM.list_models():
        console.print(f"  - {model}")

    errors = cfg.validate(require_model=False)
    for error in errors:
        console.print(f"[yellow]  ! {error}[/yellow]")


if __name__ == "__main__":
    app()
