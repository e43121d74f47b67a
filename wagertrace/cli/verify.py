"""
wagertrace/cli/verify.py

wagertrace verify: audit ledger verification.

Usage:
    wagertrace verify <ledger>                  Human output (default)
    wagertrace verify <ledger> --format json    Machine-readable JSON
    wagertrace verify <ledger> --quiet          Exit code only

LEDGER may be the ledger.jsonl file or the directory holding it.

Exit codes:
    0  Ledger fully valid  (chain + signatures + schema)
    1  Ledger has violations
    2  Error  (file missing, malformed JSON)
"""

import json
import sys
from pathlib import Path

import click

from wagertrace.core.exceptions import LedgerError
from wagertrace.ledger.ledger import (
    AuditLedger,
    LedgerReport,
    read_ledger_file,
    resolve_ledger_file,
    verify_records,
)


def _row_ok(label: str, value: str) -> str:
    return f"  {click.style(f'{label:<12}', dim=True)}  {click.style('OK', fg='green')}    {value}"


def _row_fail(label: str, value: str) -> str:
    return f"  {click.style(f'{label:<12}', dim=True)}  {click.style('FAIL', fg='red')}  {value}"


def _row_info(label: str, value: str) -> str:
    return f"  {click.style(f'{label:<12}', dim=True)}        {value}"


@click.command(name="verify")
@click.argument("ledger", type=click.Path(exists=False))
@click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json"], case_sensitive=False),
    default="human",
    show_default=True,
    help="Output format.",
)
@click.option(
    "--quiet",
    is_flag=True,
    default=False,
    help="Suppress all output. Use exit code only (0=valid, 1=invalid, 2=error).",
)
def verify_command(ledger: str, fmt: str, quiet: bool) -> None:
    """
    Verify an audit ledger: chain integrity, signatures, schema.

    \b
    Examples:
      wagertrace verify .wagertrace/
      wagertrace verify .wagertrace/ledger.jsonl --format json
      wagertrace verify .wagertrace/ --quiet && echo "clean"
    """
    try:
        path    = resolve_ledger_file(ledger)
        records = read_ledger_file(path)
    except LedgerError as exc:
        _emit_error(str(exc), fmt, quiet)
        sys.exit(2)

    report = verify_records(records)

    if not quiet:
        if fmt == "json":
            out = report.to_dict()
            out["ledger"] = str(path)
            if records:
                out["head_hash"] = AuditLedger.replay(path).head_hash
            click.echo(json.dumps({"wagertrace_verify": out}, indent=2))
        else:
            _output_human(report, path)

    sys.exit(0 if report.valid else 1)


def _output_human(report: LedgerReport, path: Path) -> None:
    bar = "─" * 60
    chain_v  = [v for v in report.violations if v.violation_type == "chain_break"]
    seq_v    = [v for v in report.violations if v.violation_type == "sequence_gap"]
    schema_v = [v for v in report.violations if v.violation_type == "schema"]

    click.echo()
    click.echo(click.style("  wagertrace  ·  audit ledger verification", bold=True))
    click.echo(f"  {bar}")
    click.echo(_row_info("Ledger", str(path)))
    click.echo(_row_info("Records", f"{report.total_records:,}"))
    click.echo()

    if chain_v:
        click.echo(_row_fail("Chain", f"{len(chain_v)} break(s)"))
    else:
        click.echo(_row_ok("Chain", "intact"))

    if report.invalid_signatures:
        click.echo(_row_fail(
            "Signatures",
            f"{report.valid_signatures:,} valid, {report.invalid_signatures:,} INVALID",
        ))
    else:
        click.echo(_row_ok("Signatures", f"{report.valid_signatures:,} / {report.total_records:,} valid"))

    if schema_v:
        click.echo(_row_fail("Schema", f"{len(schema_v)} violation(s)"))
    else:
        click.echo(_row_ok("Schema", "all records conform"))

    if seq_v:
        click.echo(_row_fail("Sequence", f"{len(seq_v)} gap(s)"))
    else:
        click.echo(_row_ok("Sequence", "no gaps"))

    if report.table_counts:
        click.echo()
        counts = "  ".join(f"{k}: {v:,}" for k, v in sorted(report.table_counts.items()))
        click.echo(_row_info("Tables", counts))

    if report.violations:
        click.echo()
        click.echo(f"  {bar}")
        for v in report.violations:
            click.echo(f"  {v.at_sequence:>6}  {v.violation_type:<18}  {v.detail}")

    click.echo(f"  {bar}")
    if report.valid:
        click.echo(click.style("  VALID  ·  0 violations", fg="green", bold=True))
    else:
        click.echo(click.style(
            f"  INVALID  ·  {len(report.violations)} violation(s)", fg="red", bold=True
        ))
    click.echo()


def _emit_error(msg: str, fmt: str, quiet: bool) -> None:
    """Emit error in the correct format. Never raises."""
    if quiet:
        return
    if fmt == "json":
        click.echo(json.dumps({
            "wagertrace_verify": {
                "error": msg,
                "valid": False,
            }
        }))
    else:
        click.echo(click.style(f"\n  ERROR: {msg}\n", fg="red"), err=True)
