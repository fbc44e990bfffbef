"""``party-ledger`` command line.

Sub-commands are declared as :class:`CommandSpec` entries. Each spec knows how
to add its own sub-parser and which ``run_*`` function executes it. The
executors call :mod:`core_logic` and print plain text; nothing here computes
balances.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .constants import BalanceSide
from .engine import DateWindow, LedgerEntry, LedgerResult, LedgerSummary
from .errors import LedgerError
from .money import format_money, to_minor_units


DRIFT_EXIT_CODE = 4

SubParsers = argparse._SubParsersAction
Executor = Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


@dataclass(frozen=True)
class CommandSpec:
    """A sub-command: its name, help, sub-parser factory and executor."""

    name: str
    help_text: str
    register: Callable[[SubParsers], argparse.ArgumentParser]
    execute: Executor


def build_parser() -> argparse.ArgumentParser:
    """Return the root parser; sub-commands are added by :func:`configure_subcommands`."""
    parser = argparse.ArgumentParser(
        prog="party-ledger",
        description="Reconcile party ledgers from the business records workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="config.ini to use; by default the nearest one above the working directory.",
    )
    return parser


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Attach every sub-command to ``parser`` and return them by name."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    return build_command_table(register_read_commands(subparsers).values())


def register_read_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Add the read-only ledger commands to ``subparsers``."""
    specs = [
        _party_command("parties", "List parties with their stored balances.", run_parties, party=False),
        _party_command(
            "balances",
            "Recompute every party's balance and split it into receivable and payable.",
            run_balances,
            party=False,
            side_filter=True,
        ),
        _party_command("statement", "Print a party's chronological ledger with running balance.", run_statement, window=True),
        _party_command("summary", "Print a party's summary totals.", run_summary, window=True),
        _party_command("check", "Compare a party's stored balance with the recomputed one.", run_check),
    ]
    for spec in specs:
        spec.register(subparsers)
    return {spec.name: spec for spec in specs}


def _party_command(
    name: str,
    help_text: str,
    execute: Executor,
    *,
    party: bool = True,
    window: bool = False,
    side_filter: bool = False,
) -> CommandSpec:
    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        sub = action.add_parser(name, help=help_text)
        if party:
            sub.add_argument("--party", required=True, help="Party name as written on the Parties sheet.")
        if window:
            sub.add_argument("--from", dest="date_from", type=date.fromisoformat, default=None, help="First day (YYYY-MM-DD).")
            sub.add_argument("--to", dest="date_to", type=date.fromisoformat, default=None, help="Last day (YYYY-MM-DD).")
        if side_filter:
            sub.add_argument(
                "--only",
                choices=[side.value for side in BalanceSide],
                default=None,
                help="Show only receivable or only payable parties.",
            )
        sub.set_defaults(command=name)
        return sub

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Open the configured workbook; ``None`` lets the config search run."""
    return core_logic.load_runtime_context(None if config_path is None else Path(config_path))


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Run the executor registered for ``args.command``.

    Raises:
        KeyError: ``args.command`` is missing or not in ``command_table``.
    """
    name = getattr(args, "command", None)
    if name not in command_table:
        raise KeyError(f"No executor registered for command {name!r}")
    return command_table[name].execute(context, args)


def build_command_table(specs: Iterable[CommandSpec]) -> MutableMapping[str, CommandSpec]:
    """Index ``specs`` by name, rejecting two specs with the same name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Command {spec.name!r} registered twice")
        table[spec.name] = spec
    return table


def translate_window(args: argparse.Namespace) -> Optional[DateWindow]:
    """Translate ``--from``/``--to`` into a :class:`DateWindow`.

    Raises:
        ValueError: If the window is inverted.
    """
    date_from = getattr(args, "date_from", None)
    date_to = getattr(args, "date_to", None)
    if date_from is None and date_to is None:
        return None
    return DateWindow(date_from=date_from, date_to=date_to)


def _money(context: core_logic.RuntimeContext, amount_minor: int) -> str:
    settings = context.settings
    return format_money(amount_minor, currency=settings.currency, exponent=settings.currency_exponent)


def render_entry(context: core_logic.RuntimeContext, entry: LedgerEntry) -> str:
    """Format one ledger line.

    Quotations, orders and challans never move the balance, so their delta
    column shows ``-``.
    """
    balance = entry.balance_after if entry.balance_after is not None else 0
    delta = _money(context, entry.balance_delta) if entry.is_financial else "-"
    flags = " [linked]" if entry.linked else ""
    return (
        f"{entry.timestamp:%Y-%m-%d %H:%M}  {entry.kind.value:<16}  {entry.reference_number or '-':<12}  "
        f"{_money(context, entry.gross_amount):>16}  {delta:>16}  "
        f"{_money(context, balance):>16}{flags}"
    )


def render_summary(context: core_logic.RuntimeContext, summary: LedgerSummary) -> List[str]:
    """Format summary totals, one labelled figure per line."""
    figures = [
        ("Opening balance", summary.opening_balance),
        ("Total sale", summary.total_sale),
        ("Total purchase", summary.total_purchase),
        ("Total payment in", summary.total_payment_in),
        ("Total payment out", summary.total_payment_out),
        ("Total credit note", summary.total_credit_note),
        ("Total expense", summary.total_expense),
        ("Money in", summary.total_money_in),
        ("Money out", summary.total_money_out),
        ("Net receivable", summary.total_receivable),
        ("Closing balance", summary.closing_balance),
    ]
    lines = [f"{label:<18} {_money(context, value):>18}" for label, value in figures]
    lines.append(f"{'Entries':<18} {summary.entry_count:>18}")
    return lines


def render_notices(result: LedgerResult) -> List[str]:
    """Format warnings about skipped records and incomplete data."""
    lines: List[str] = []
    if result.partial:
        lines.append("WARNING: some record sets could not be read; figures are incomplete.")
    for warning in result.warnings:
        lines.append(f"WARNING: skipped {warning.record_set.value} record #{warning.index}: {warning.message}")
    return lines


def run_parties(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List parties with their stored balances."""
    exponent = context.settings.currency_exponent
    for party in core_logic.list_parties(context):
        stored = "-" if party.current_balance is None else _money(context, to_minor_units(party.current_balance, exponent=exponent))
        print(f"{party.party_name:<30} {party.party_type or '-':<10} {stored:>18}")
    return 0


def run_balances(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print recomputed receivable/payable balances and their totals."""
    report = core_logic.party_balances(context, getattr(args, "only", None))
    print(f"{'Party':<30} {'Receivable':>18} {'Payable':>18}")
    for row in report.rows:
        marker = "  (incomplete)" if row.partial else ""
        print(f"{row.party_name:<30} {_money(context, row.receivable):>18} {_money(context, row.payable):>18}{marker}")
    print(f"{'Total':<30} {_money(context, report.total_receivable):>18} {_money(context, report.total_payable):>18}")
    if report.partial:
        print("WARNING: some record sets could not be read; figures are incomplete.")
    return 0


def run_statement(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the chronological ledger followed by its summary."""
    result = core_logic.build_party_ledger(context, args.party, translate_window(args))
    print(f"Statement for {result.party.name} ({context.settings.business_name})")
    for entry in result.ledger:
        print(render_entry(context, entry))
    print()
    for line in render_summary(context, result.summary):
        print(line)
    for line in render_notices(result):
        print(line)
    return 0


def run_summary(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the summary totals only."""
    result = core_logic.build_party_ledger(context, args.party, translate_window(args))
    for line in render_summary(context, result.summary):
        print(line)
    for line in render_notices(result):
        print(line)
    return 0


def run_check(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Report balance drift; exit with ``DRIFT_EXIT_CODE`` when found."""
    consistency = core_logic.check_party_balance(context, args.party)
    if consistency is None:
        print(f"{args.party}: no stored balance to compare")
        return 0
    if consistency.matches:
        print(f"{args.party}: OK ({_money(context, consistency.computed_balance)})")
        return 0
    print(
        f"{args.party}: DRIFT {_money(context, consistency.drift)} "
        f"(stored {_money(context, consistency.stored_balance)}, "
        f"computed {_money(context, consistency.computed_balance)})"
    )
    return DRIFT_EXIT_CODE


def handle_cli_error(error: Exception) -> int:
    """Log ``error`` and pick the exit code for its family.

    Ledger errors exit with 2, a missing config or workbook with 3, anything
    else with 1.
    """
    log.error("%s: %s", type(error).__name__, error)
    if isinstance(error, LedgerError):
        return 2
    if isinstance(error, FileNotFoundError):
        return 3
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the ``party-ledger`` console script."""
    parser = build_parser()
    commands = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        return dispatch_command(context, args, commands)
    except Exception as error:
        return handle_cli_error(error)
