"""
wagertrace/cli/views.py

Read-only views over an audit ledger.

    wagertrace stats <ledger>               Record counts per table
    wagertrace reputation <ledger> <agent>  Reputation view of one agent
"""

import json
import sys

import click

from wagertrace.core.exceptions import LedgerError
from wagertrace.ledger.ledger import AuditLedger
from wagertrace.registry.reputation import ReputationRegistry


def _open(ledger: str) -> AuditLedger:
    try:
        return AuditLedger.replay(ledger)
    except LedgerError as exc:
        click.echo(click.style(f"ERROR: {exc}", fg="red"), err=True)
        sys.exit(2)


@click.command(name="stats")
@click.argument("ledger", type=click.Path(exists=False))
def stats_command(ledger: str) -> None:
    """Record counts per table."""
    stats = _open(ledger).get_stats()
    stats["ledger_file"] = ledger
    click.echo(json.dumps(stats, indent=2))


@click.command(name="reputation")
@click.argument("ledger", type=click.Path(exists=False))
@click.argument("agent")
@click.option(
    "--trusted-threshold",
    type=float,
    default=0.95,
    show_default=True,
    help="Success rate above which the agent counts as trusted.",
)
def reputation_command(ledger: str, agent: str, trusted_threshold: float) -> None:
    """Rebuild the reputation view of AGENT from a ledger."""
    registry = ReputationRegistry(_open(ledger), trusted_success_rate=trusted_threshold)
    click.echo(json.dumps(registry.verify_agent(agent), indent=2))
