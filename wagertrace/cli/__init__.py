"""
wagertrace/cli/__init__.py

wagertrace CLI: root Click command group.

Registered in pyproject.toml as:

    [project.scripts]
    wagertrace = "wagertrace.cli:cli"

Adding a new command:
    1. Create wagertrace/cli/your_command.py with a @click.command()
    2. Import it here
    3. cli.add_command(your_command)
"""

import logging

import click

from wagertrace.cli.views import reputation_command, stats_command
from wagertrace.cli.verify import verify_command


@click.group()
@click.version_option(package_name="wagertrace")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Log at DEBUG level.")
def cli(verbose: bool) -> None:
    """
    wagertrace: settlement audit ledger CLI.

    \b
    Commands:
      verify      Verify an audit ledger: chain, signatures, schema.
      stats       Record counts per table.
      reputation  Reputation view of a settlement agent.

    \b
    Quick start:
      wagertrace verify .wagertrace/
      wagertrace verify .wagertrace/ledger.jsonl --format json
      wagertrace reputation .wagertrace/ agent-facilitator-1
    """
    logging.basicConfig(
        level=  logging.DEBUG if verbose else logging.WARNING,
        format= "%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


cli.add_command(verify_command)
cli.add_command(stats_command)
cli.add_command(reputation_command)
