"""Integration tests describing the end-to-end party ledger workflows.

These scenarios exercise the setup script, the data access layer, the
business logic layer and the CLI against real temporary workbooks.
"""

from __future__ import annotations

from datetime import datetime

import openpyxl
import pytest

from party_ledger import cli, constants, core_logic, setup_excel

from conftest import DEFAULT_PARTY, append_rows


def test_ledger_refreshes_after_new_records(runtime_context, records):
    """A payment written to disk shows up once the context is refreshed."""

    context = runtime_context
    before = core_logic.build_party_ledger(context, DEFAULT_PARTY)
    assert before.final_balance == 40000
    assert before.consistency is not None and before.consistency.matches

    append_rows(
        context.settings.data_file,
        constants.SheetName.PAYMENTS_IN.value,
        [records.payment_in(datetime(2025, 3, 1, 9, 0), 150, receiptNo="RCV-2")],
    )
    assert core_logic.is_stale(context)

    context = core_logic.refresh_context(context)
    after = core_logic.build_party_ledger(context, DEFAULT_PARTY)

    assert after.final_balance == 25000
    assert after.ledger[-1].reference_number == "RCV-2"
    # The stored balance was not updated by the writer, so it now drifts.
    assert after.consistency is not None
    assert after.consistency.drift == 40000 - 25000


@pytest.mark.parametrize(("policy", "expected_balance"), [("netted", 60000), ("standalone", 30000)])
def test_linked_payment_policy_is_read_from_config(config_factory, records, policy, expected_balance):
    """Invoice payments are netted or counted depending on configuration."""

    sheets = {
        "Parties": [{"PartyID": "P-1", "PartyName": DEFAULT_PARTY, "OpeningBalance": 0}],
        "Sales": [records.sale(datetime(2025, 1, 5), 1000, 400)],
        "PaymentsIn": [
            records.payment_in(datetime(2025, 1, 5, 12), 300, saleId="S-1", category="Invoice Payment In"),
        ],
    }
    bundle = config_factory(policy=policy, sheets=sheets)
    context = core_logic.load_runtime_context(bundle.config_path)

    result = core_logic.build_party_ledger(context, DEFAULT_PARTY)

    assert result.final_balance == expected_balance
    assert result.ledger[-1].linked is True
    assert result.consistency is None


def test_missing_sheet_produces_partial_statement(config_factory, capsys):
    """A broken record sheet degrades the statement instead of failing it."""

    bundle = config_factory()
    workbook = openpyxl.load_workbook(bundle.workbook_path)
    del workbook[constants.SheetName.EXPENSES.value]
    workbook.save(bundle.workbook_path)

    context = core_logic.load_runtime_context(bundle.config_path)
    result = core_logic.build_party_ledger(context, DEFAULT_PARTY)

    assert result.partial is True
    assert result.final_balance == 40000

    exit_code = cli.main(["--config", str(bundle.config_path), "statement", "--party", DEFAULT_PARTY])
    assert exit_code == 0
    assert "figures are incomplete" in capsys.readouterr().out


def test_malformed_rows_are_reported_in_statement(config_factory, records, capsys):
    """Rows without a date are skipped and listed as warnings."""

    sheets = {
        "Parties": [{"PartyID": "P-1", "PartyName": DEFAULT_PARTY, "OpeningBalance": 0}],
        "Sales": [records.sale(datetime(2025, 1, 5), 1000, 400), records.sale(None, 999)],
    }
    bundle = config_factory(sheets=sheets)

    exit_code = cli.main(["--config", str(bundle.config_path), "statement", "--party", DEFAULT_PARTY])

    output = capsys.readouterr().out
    assert exit_code == 0
    assert "WARNING: skipped sales record #1" in output
    assert "PKR 600.00" in output


def test_schema_mismatch_blocks_cli(config_factory):
    """The CLI refuses to read workbooks with an unexpected schema version."""

    bundle = config_factory(schema_version="0.1.0")
    assert cli.main(["--config", str(bundle.config_path), "parties"]) == 1


# ---------------------------------------------------------------------------
# Workbook setup
# ---------------------------------------------------------------------------


def test_create_template_workbook_builds_every_sheet(tmp_path):
    """The template contains the Parties sheet and one sheet per record set."""

    path = setup_excel.create_template_workbook(tmp_path / "records.xlsx")
    workbook = openpyxl.load_workbook(path)

    expected = {sheet.value for sheet in constants.SheetName}
    assert set(workbook.sheetnames) == expected
    header = [cell.value for cell in workbook[constants.SheetName.PARTIES.value][1]]
    assert header == list(setup_excel.SHEET_COLUMNS["Parties"])


def test_create_template_workbook_refuses_to_overwrite(tmp_path):
    """Existing workbooks are protected unless overwrite is requested."""

    path = setup_excel.create_template_workbook(tmp_path / "records.xlsx")
    with pytest.raises(FileExistsError):
        setup_excel.create_template_workbook(path)
    assert setup_excel.create_template_workbook(path, overwrite=True) == path


def test_setup_main_creates_workbook_from_config(tmp_path, capsys):
    """The setup script resolves DataFile relative to the config file."""

    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nDataFile = data/records.xlsx\nBusinessName = Traders\nSchemaVersion = 1.0.0\n")

    assert setup_excel.main(["--config", str(config_path)]) == 0
    assert (tmp_path / "data" / "records.xlsx").exists()
    assert setup_excel.main(["--config", str(config_path)]) == 1
    assert "--force" in capsys.readouterr().out
    assert setup_excel.main(["--config", str(config_path), "--force"]) == 0


def test_setup_main_reports_missing_config(tmp_path, capsys):
    """A missing config file is reported as an error exit."""

    assert setup_excel.main(["--config", str(tmp_path / "nope.ini")]) == 1
    assert "[ERROR]" in capsys.readouterr().out
