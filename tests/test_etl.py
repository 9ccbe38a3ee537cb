"""
Tests for the ledger CSV loader.
Tests Decimal-based currency parsing and per-project scoping of exports.
"""
from datetime import date
from decimal import Decimal

import pandas as pd
import pytest

from correlation_engine.domain.entities import ExpenseRecord
from correlation_engine.modules.etl import (
    parse_money,
    parse_money_to_cents,
    read_ledger_csv,
    load_records,
    load_ledger_snapshot,
)


class TestParseMoneyToCents:
    """Tests for parse_money_to_cents with Decimal precision."""

    def test_integer_input(self):
        assert parse_money_to_cents(100) == 10000
        assert parse_money_to_cents(0) == 0
        assert parse_money_to_cents(-50) == -5000

    def test_float_input(self):
        assert parse_money_to_cents(100.50) == 10050
        assert parse_money_to_cents(0.01) == 1
        assert parse_money_to_cents(-25.75) == -2575

    def test_string_currency_format(self):
        assert parse_money_to_cents("$1,234.56") == 123456
        assert parse_money_to_cents("1,234") == 123400
        assert parse_money_to_cents(" 715,643.50 ") == 71564350

    def test_negative_formats(self):
        assert parse_money_to_cents("-$500.00") == -50000
        assert parse_money_to_cents("($1,000.00)") == -100000  # Accounting notation

    def test_empty_and_malformed(self):
        assert parse_money_to_cents(None) == 0
        assert parse_money_to_cents("") == 0
        assert parse_money_to_cents(" - ") == 0
        assert parse_money_to_cents("abc") == 0
        assert parse_money_to_cents("$..50") == 0

    def test_round_half_up(self):
        assert parse_money_to_cents(99.995) == 10000
        assert parse_money_to_cents(99.994) == 9999


class TestParseMoney:
    """Malformed money is None, never an exception."""

    def test_values(self):
        assert parse_money("$480.00") == Decimal("480.00")
        assert parse_money(float("nan")) is None
        assert parse_money("n/a") is None
        assert parse_money(True) is None


def _write(directory, name, rows):
    pd.DataFrame(rows).to_csv(directory / name, index=False)


@pytest.fixture
def export_dir(tmp_path):
    """Two projects worth of ledger exports."""
    _write(tmp_path, 'estimates.csv', [
        {'id': 'est-1', 'projectId': 'p-1'},
        {'id': 'est-2', 'projectId': 'p-2'},
    ])
    _write(tmp_path, 'estimate_line_items.csv', [
        {'id': 'eli-1', 'estimateId': 'est-1', 'category': 'materials', 'quantity': '10', 'costPerUnit': '$50.00'},
        {'id': 'eli-2', 'estimateId': 'est-2', 'category': 'labor', 'totalCost': '1,000'},
    ])
    _write(tmp_path, 'quotes.csv', [
        {'id': 'q-1', 'project_id': 'p-1', 'status': 'Accepted', 'payee_name': 'Acme Supply'},
        {'id': 'q-2', 'project_id': 'p-2', 'status': 'pending', 'payee_name': 'Other'},
    ])
    _write(tmp_path, 'quote_line_items.csv', [
        {'id': 'qli-1', 'quote_id': 'q-1', 'estimate_line_item_id': 'eli-1', 'total_cost': '480'},
        {'id': 'qli-2', 'quote_id': 'q-2', 'estimate_line_item_id': 'eli-2', 'total_cost': '900'},
    ])
    _write(tmp_path, 'expenses.csv', [
        {'id': 'e-1', 'projectId': 'p-1', 'amount': '$480.00', 'payeeName': 'Acme Supply', 'expenseDate': '2024-03-01'},
        {'id': 'e-2', 'projectId': 'p-1', 'amount': '($25.00)', 'payeeName': '', 'expenseDate': 'not a date'},
        {'id': 'e-3', 'projectId': 'p-2', 'amount': '10', 'payeeName': 'Other', 'expenseDate': ''},
        {'id': '', 'projectId': 'p-1', 'amount': '5', 'payeeName': 'No Id', 'expenseDate': ''},
    ])
    _write(tmp_path, 'expense_splits.csv', [
        {'id': 's-1', 'expense_id': 'e-1', 'split_amount': '240', 'project_id': ''},
        {'id': 's-2', 'expense_id': 'e-3', 'split_amount': '5', 'project_id': 'p-1'},
        {'id': 's-3', 'expense_id': 'e-3', 'split_amount': '5', 'project_id': 'p-2'},
    ])
    _write(tmp_path, 'correlations.csv', [
        {'id': 'l-1', 'expense_id': 'e-1', 'expense_split_id': '', 'quote_id': 'q-1'},
        {'id': 'l-2', 'expense_id': 'e-3', 'expense_split_id': 's-2', 'quote_id': ''},
        {'id': 'l-3', 'expense_id': 'e-3', 'expense_split_id': '', 'quote_id': 'q-2'},
    ])
    return tmp_path


class TestReadLedgerCsv:
    """Tests for reading single exports."""

    def test_missing_file_is_empty(self, tmp_path):
        assert read_ledger_csv(tmp_path / 'nope.csv').empty

    def test_ids_kept_as_text(self, tmp_path):
        _write(tmp_path, 'expenses.csv', [{'id': '007', 'amount': '1'}])
        df = read_ledger_csv(tmp_path / 'expenses.csv')
        assert df['id'].tolist() == ['007']

    def test_headers_stripped(self, tmp_path):
        (tmp_path / 'expenses.csv').write_text('\ufeff id , amount \ne-1,5\n', encoding='utf-8')
        df = read_ledger_csv(tmp_path / 'expenses.csv')
        assert list(df.columns) == ['id', 'amount']


class TestLoadRecords:
    """Tests for row validation."""

    def test_invalid_rows_skipped(self, caplog):
        df = pd.DataFrame([
            {'id': 'e-1', 'amount': '12.50'},
            {'id': None, 'amount': '3'},
        ])
        records = load_records(df, ExpenseRecord)
        assert [r.id for r in records] == ['e-1']
        assert records[0].amount == Decimal('12.50')
        assert 'Skipping ExpenseRecord row 1' in caplog.text

    def test_empty_frame(self):
        assert load_records(pd.DataFrame(), ExpenseRecord) == []


class TestLoadLedgerSnapshot:
    """Tests for per-project scoping."""

    def test_budget_side_scoped(self, export_dir):
        snapshot = load_ledger_snapshot(export_dir, 'p-1')
        assert [li.id for li in snapshot.estimate_line_items] == ['eli-1']
        assert snapshot.estimate_line_items[0].cost_per_unit == Decimal('50.00')
        assert [q.id for q in snapshot.quotes] == ['q-1']
        assert snapshot.quotes[0].status == 'accepted'
        assert [qli.id for qli in snapshot.quote_line_items] == ['qli-1']
        assert snapshot.change_orders == []
        assert snapshot.change_order_line_items == []

    def test_expenses_parsed(self, export_dir):
        snapshot = load_ledger_snapshot(export_dir, 'p-1')
        expenses = {e.id: e for e in snapshot.expenses}
        assert set(expenses) == {'e-1', 'e-2'}
        assert expenses['e-1'].amount == Decimal('480.00')
        assert expenses['e-1'].expense_date == date(2024, 3, 1)
        assert expenses['e-2'].amount == Decimal('-25.00')
        assert expenses['e-2'].expense_date is None
        assert expenses['e-2'].payee_name is None

    def test_splits_by_project_or_parent(self, export_dir):
        snapshot = load_ledger_snapshot(export_dir, 'p-1')
        assert sorted(s.id for s in snapshot.expense_splits) == ['s-1', 's-2']

    def test_correlations_by_expense_or_split(self, export_dir):
        snapshot = load_ledger_snapshot(export_dir, 'p-1')
        assert sorted(c.id for c in snapshot.correlations) == ['l-1', 'l-2']
        whole = next(c for c in snapshot.correlations if c.id == 'l-1')
        assert whole.expense_split_id is None
        assert whole.quote_id == 'q-1'

    def test_other_project(self, export_dir):
        snapshot = load_ledger_snapshot(export_dir, 'p-2')
        assert [e.id for e in snapshot.expenses] == ['e-3']
        assert [li.id for li in snapshot.estimate_line_items] == ['eli-2']
        assert snapshot.estimate_line_items[0].total_cost == Decimal('1000')

    def test_estimate_items_without_estimates_export(self, tmp_path):
        _write(tmp_path, 'estimate_line_items.csv', [
            {'id': 'eli-1', 'estimateId': 'est-1', 'category': 'materials', 'totalCost': '500'},
            {'id': 'eli-2', 'estimateId': 'est-2', 'category': 'labor', 'totalCost': '1,000'},
        ])
        snapshot = load_ledger_snapshot(tmp_path, 'p-1')
        assert snapshot.estimate_line_items == []

    def test_empty_directory(self, tmp_path):

        snapshot = load_ledger_snapshot(tmp_path, 'p-1')
        assert snapshot.project_id == 'p-1'
        assert snapshot.expenses == []
        assert snapshot.correlations == []
