"""
End-to-end tests for project financial detail.

Covers the concrete reconciliation scenarios:
1. Estimate → accepted quote → expense via quote is fully allocated
2. Duplicate correlation rows count once
3. Splits go to different change-order items at split amounts
4. Zero-baseline items stay in the output with zero variance
5. Category match outranks exact amount in suggestions
6. Quote pointing only at a change-order item never touches estimates
"""
from decimal import Decimal

import pytest

from correlation_engine.domain.entities import (
    AllocationStatus,
    CategorySummary,
    ChangeOrderLineItemRecord,
    ChangeOrderRecord,
    CorrelationLinkRecord,
    CostCategory,
    EstimateLineItemRecord,
    ExpenseRecord,
    ExpenseSplitRecord,
    LedgerSnapshot,
    LineItem,
    QuoteLineItemRecord,
    QuoteRecord,
    SourceType,
)
from correlation_engine.domain.exceptions import InvariantViolationError
from correlation_engine.domain.services import FinancialDetailService
from correlation_engine.domain.services.financial_detail_service import verify_conservation
from correlation_engine.modules.aggregator import AggregationResult
from correlation_engine.modules.resolver import WarningKind


PROJECT = 'p-1'


@pytest.fixture
def service():
    return FinancialDetailService()


@pytest.fixture
def base_ledgers():
    """One materials estimate item quoted by Acme at $480."""
    return dict(
        project_id=PROJECT,
        estimate_line_items=[
            EstimateLineItemRecord(
                id='eli-1', estimate_id='est-1', category='materials',
                description='Framing lumber', quantity=10, cost_per_unit=50,
            ),
        ],
        quotes=[QuoteRecord(id='q-1', project_id=PROJECT, status='accepted', payee_name='Acme Supply')],
        quote_line_items=[
            QuoteLineItemRecord(
                id='qli-1', quote_id='q-1', estimate_line_item_id='eli-1',
                category='materials', description='Framing lumber', total_cost=480,
            ),
        ],
        expenses=[
            ExpenseRecord(id='e-1', amount=480, category='materials', payee_name='Acme Supply', project_id=PROJECT),
        ],
    )


class TestScenarios:
    """The six reference scenarios."""

    def test_quote_backed_expense_fully_allocated(self, service, base_ledgers):
        snapshot = LedgerSnapshot(
            **base_ledgers,
            correlations=[CorrelationLinkRecord(id='l-1', expense_id='e-1', quote_id='q-1')],
        )
        detail = service.build(snapshot)

        assert len(detail.categories) == 1
        materials = detail.categories[0]
        assert materials.category == CostCategory.MATERIALS
        assert materials.estimated_cost == Decimal('500')
        assert materials.quoted_cost == Decimal('480')
        assert materials.actual_cost == Decimal('480')
        assert materials.variance == Decimal('0')
        assert materials.variance_percent == 0.0
        assert materials.line_items[0].allocation_status == AllocationStatus.FULL
        assert detail.allocation_summary.allocated_count == 1
        assert detail.warnings == ()
        # the quote line holds no allocation of its own
        assert sum((li.allocated_amount for li in detail.line_items), Decimal('0')) == Decimal('480')

    def test_duplicate_links_count_once(self, service, base_ledgers):
        snapshot = LedgerSnapshot(
            **base_ledgers,
            correlations=[
                CorrelationLinkRecord(id='l-1', expense_id='e-1', quote_id='q-1'),
                CorrelationLinkRecord(id='l-2', expense_id='e-1', quote_id='q-1'),
            ],
        )
        detail = service.build(snapshot)
        assert detail.categories[0].actual_cost == Decimal('480')

    def test_splits_to_different_change_order_items(self, service):
        snapshot = LedgerSnapshot(
            project_id=PROJECT,
            change_orders=[ChangeOrderRecord(id='co-1', project_id=PROJECT, number='CO-001', status='approved')],
            change_order_line_items=[
                ChangeOrderLineItemRecord(id='coli-1', change_order_id='co-1', category='subcontractor', total_cost=150),
                ChangeOrderLineItemRecord(id='coli-2', change_order_id='co-1', category='subcontractor', total_cost=150),
            ],
            expenses=[ExpenseRecord(id='e-1', amount=300, category='subcontractor', project_id=PROJECT)],
            expense_splits=[
                ExpenseSplitRecord(id='s-1', expense_id='e-1', split_amount=150, project_id=PROJECT),
                ExpenseSplitRecord(id='s-2', expense_id='e-1', split_amount=150, project_id=PROJECT),
            ],
            correlations=[
                CorrelationLinkRecord(id='l-1', expense_id='e-1', expense_split_id='s-1', change_order_line_item_id='coli-1'),
                CorrelationLinkRecord(id='l-2', expense_id='e-1', expense_split_id='s-2', change_order_line_item_id='coli-2'),
            ],
        )
        detail = service.build(snapshot)

        allocated = {li.id: li.allocated_amount for li in detail.line_items}
        assert allocated == {'coli-1': Decimal('150'), 'coli-2': Decimal('150')}
        assert detail.categories[0].actual_cost == Decimal('300')
        assert detail.warnings == ()

    def test_zero_baseline_item_kept(self, service):
        snapshot = LedgerSnapshot(
            project_id=PROJECT,
            estimate_line_items=[EstimateLineItemRecord(id='eli-0', category='permits', description='Permit TBD')],
        )
        detail = service.build(snapshot)

        assert len(detail.categories) == 1
        line = detail.categories[0].line_items[0]
        assert line.id == 'eli-0'
        assert line.variance == Decimal('0')
        assert line.variance_percent == 0.0
        assert line.allocation_status == AllocationStatus.NONE
        assert detail.categories[0].variance_percent == 0.0

    def test_category_match_outranks_amount(self, service):
        snapshot = LedgerSnapshot(
            project_id=PROJECT,
            estimate_line_items=[
                EstimateLineItemRecord(id='eli-mat', category='materials', total_cost=500),
            ],
            change_orders=[ChangeOrderRecord(id='co-1', project_id=PROJECT, status='approved')],
            change_order_line_items=[
                ChangeOrderLineItemRecord(
                    id='coli-eq', change_order_id='co-1', category='equipment',
                    total_cost=475, payee_name='Heavy Haul Rentals',
                ),
            ],
            expenses=[
                ExpenseRecord(id='e-1', amount=475, category='materials', payee_name='Acme Supply', project_id=PROJECT),
            ],
        )
        suggestions = service.suggest_for_unallocated(snapshot)
        assert suggestions['e-1'] is not None
        assert suggestions['e-1'].line_item_id == 'eli-mat'

    def test_quote_to_change_order_only(self, service):
        snapshot = LedgerSnapshot(
            project_id=PROJECT,
            estimate_line_items=[EstimateLineItemRecord(id='eli-1', category='materials', total_cost=1000)],
            quotes=[QuoteRecord(id='q-1', project_id=PROJECT, status='accepted', payee_name='Acme')],
            quote_line_items=[
                QuoteLineItemRecord(id='qli-1', quote_id='q-1', change_order_line_item_id='coli-x', total_cost=250),
            ],
            change_orders=[ChangeOrderRecord(id='co-1', project_id=PROJECT, status='approved')],
            change_order_line_items=[
                ChangeOrderLineItemRecord(id='coli-x', change_order_id='co-1', category='materials', total_cost=250),
            ],
            expenses=[ExpenseRecord(id='e-1', amount=250, project_id=PROJECT)],
            correlations=[CorrelationLinkRecord(id='l-1', expense_id='e-1', quote_id='q-1')],
        )
        detail = service.build(snapshot)

        allocated = {li.id: li.allocated_amount for li in detail.line_items if li.is_budget_item}
        assert allocated['coli-x'] == Decimal('250')
        assert allocated['eli-1'] == Decimal('0')


class TestBuild:
    """Tests for the orchestration itself."""

    def test_warnings_surface(self, service, base_ledgers):
        snapshot = LedgerSnapshot(
            **base_ledgers,
            correlations=[
                CorrelationLinkRecord(id='l-1', expense_id='e-1', estimate_line_item_id='gone'),
                CorrelationLinkRecord(id='l-2', expense_id='e-1', quote_id='q-1'),
            ],
        )
        detail = service.build(snapshot)
        assert [w.kind for w in detail.warnings] == [WarningKind.ORPHANED_TARGET]
        assert detail.categories[0].actual_cost == Decimal('480')

    def test_split_mismatch_warning(self, service):
        snapshot = LedgerSnapshot(
            project_id=PROJECT,
            expenses=[ExpenseRecord(id='e-1', amount=300, project_id=PROJECT)],
            expense_splits=[ExpenseSplitRecord(id='s-1', expense_id='e-1', split_amount=100)],
        )
        detail = service.build(snapshot)
        assert [w.kind for w in detail.warnings] == [WarningKind.SPLIT_TOTAL_MISMATCH]

    def test_variance_and_margin(self, service, base_ledgers):
        snapshot = LedgerSnapshot(
            **base_ledgers,
            correlations=[CorrelationLinkRecord(id='l-1', expense_id='e-1', quote_id='q-1')],
        )
        detail = service.build(snapshot, contract_amount=Decimal('600'))
        assert detail.variance.estimate_to_quote_change == Decimal('-20')
        assert detail.variance.quote_to_actual_change == Decimal('0')
        assert detail.margin.projected_final_cost == Decimal('480')
        assert detail.margin.projected_margin == Decimal('120')

        payload = detail.to_dict()
        assert payload['project_id'] == PROJECT
        assert payload['categories'][0]['actual_cost'] == 480.0

    def test_linked_expenses_not_suggested(self, service, base_ledgers):
        snapshot = LedgerSnapshot(
            **base_ledgers,
            correlations=[CorrelationLinkRecord(id='l-1', expense_id='e-1', quote_id='q-1')],
        )
        assert service.suggest_for_unallocated(snapshot) == {}

    def test_conservation_violation_detected(self):
        broken = AggregationResult(
            categories=(CategorySummary(category=CostCategory.MATERIALS, actual_cost=Decimal('5')),),
        )
        with pytest.raises(InvariantViolationError):
            verify_conservation(broken)

    def test_quote_item_allocation_breaks_conservation(self):
        quote_item = LineItem(
            id='qli-1', source_type=SourceType.QUOTE, source_id='q-1', project_id=PROJECT,
            category=CostCategory.MATERIALS, baseline_cost=Decimal('480'),
            allocated_amount=Decimal('480'), estimate_line_item_id='eli-1',
        )
        broken = AggregationResult(
            line_items=(quote_item,),
            categories=(CategorySummary(category=CostCategory.MATERIALS, actual_cost=Decimal('0')),),
        )
        with pytest.raises(InvariantViolationError):
            verify_conservation(broken)
