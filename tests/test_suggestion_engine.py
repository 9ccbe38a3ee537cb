"""
Tests for the suggestion engine scoring algorithm.
"""
from decimal import Decimal

import pytest

from correlation_engine.config import get_config
from correlation_engine.domain.entities import (
    CostCategory,
    ExpenseRecord,
    LineItem,
    SourceType,
)
from correlation_engine.modules.suggestion_engine import (
    # Normalization functions
    normalize_vendor,
    normalize_text,
    extract_keywords,
    # Scoring functions
    compute_category_match,
    compute_payee_match,
    compute_amount_proximity,
    compute_description_match,
    build_allocated_map,
    score_candidate,
    rank_candidates,
    suggest_line_item,
    compute_all_suggestions,
)


def _item(item_id, category, baseline, source_type=SourceType.ESTIMATE,
          description='', payee=None, allocated=0, project_id='p-1'):
    return LineItem(
        id=item_id,
        source_type=source_type,
        source_id='src',
        project_id=project_id,
        category=category,
        description=description,
        baseline_cost=Decimal(str(baseline)),
        allocated_amount=Decimal(str(allocated)),
        payee_name=payee,
    )


def _expense(amount, category='materials', payee=None, description='', project_id='p-1', expense_id='e-1'):
    return ExpenseRecord(
        id=expense_id,
        amount=amount,
        category=category,
        payee_name=payee,
        description=description,
        project_id=project_id,
    )


class TestNormalizationFunctions:
    """Tests for normalization functions."""

    def test_normalize_vendor(self):
        assert normalize_vendor('ABC Corp') == 'abc'
        assert normalize_vendor('Acme LLC') == 'acme'
        assert normalize_vendor('  Spaces  Inc  ') == 'spaces'
        assert normalize_vendor('') == ''
        assert normalize_vendor(None) == ''

    def test_normalize_text(self):
        assert normalize_text('  Hello,  World!  ') == 'hello world'
        assert normalize_text('Concrete (4000 PSI)') == 'concrete 4000 psi'
        assert normalize_text(None) == ''

    def test_extract_keywords(self):
        assert extract_keywords('Lumber for the deck framing') == {'lumber', 'deck', 'framing'}
        assert extract_keywords('') == set()


class TestScoringFunctions:
    """Tests for individual scoring components."""

    def test_category_crosswalk(self):
        assert compute_category_match(CostCategory.MATERIALS, CostCategory.MATERIALS) is True
        assert compute_category_match(CostCategory.VEHICLE_MAINTENANCE, CostCategory.EQUIPMENT) is True
        assert compute_category_match(CostCategory.SOFTWARE, CostCategory.MANAGEMENT) is True
        assert compute_category_match(CostCategory.MATERIALS, CostCategory.EQUIPMENT) is False

    def test_payee_substring(self):
        assert compute_payee_match('Acme', 'ACME Supply Co') == 1.0
        assert compute_payee_match('acme supply co', 'Acme Supply') == 1.0

    def test_payee_fuzzy(self):
        score = compute_payee_match('Acme Suply', 'Acme Supply')
        assert 0.0 < score <= 1.0

    def test_payee_missing(self):
        assert compute_payee_match(None, 'Acme') == 0.0
        assert compute_payee_match('Acme', None) == 0.0
        assert compute_payee_match('Acme Supply', 'Zenith Electric') == 0.0

    def test_amount_proximity_tiers(self):
        assert compute_amount_proximity(Decimal('475'), Decimal('500')) == 1.0
        assert compute_amount_proximity(Decimal('460'), Decimal('500')) == pytest.approx(0.667)
        assert compute_amount_proximity(Decimal('410'), Decimal('500')) == pytest.approx(0.333)
        assert compute_amount_proximity(Decimal('100'), Decimal('500')) == 0.0

    def test_amount_proximity_nothing_remaining(self):
        assert compute_amount_proximity(Decimal('100'), Decimal('0')) == 0.0
        assert compute_amount_proximity(None, Decimal('100')) == 0.0

    def test_description_match(self):
        assert compute_description_match('Deck lumber', 'Lumber package') == 1.0
        assert compute_description_match('Deck lumber', 'Electrical rough-in') == 0.0


class TestCompositeScoring:
    """Tests for the composite confidence."""

    def test_perfect_match(self):
        item = _item('eli-1', CostCategory.MATERIALS, 500, description='Lumber package', payee='Acme Supply')
        scored = score_candidate(_expense(500, payee='Acme Supply', description='Lumber'), item)
        assert scored.confidence == 100
        assert scored.confidence_band == 'high'
        assert scored.payee_points == 30
        assert scored.amount_points == 15
        assert scored.description_points == 5

    def test_category_only(self):
        scored = score_candidate(_expense(10), _item('eli-1', CostCategory.MATERIALS, 500))
        assert scored.confidence == 50
        assert scored.category_match is True
        assert scored.confidence_band == 'medium'

    def test_confidence_is_int_within_range(self):
        scored = score_candidate(
            _expense(480, payee='Acme Suply'),
            _item('eli-1', CostCategory.MATERIALS, 500, payee='Acme Supply'),
        )
        assert isinstance(scored.confidence, int)
        assert 0 <= scored.confidence <= 100

    def test_allocated_item_scores_lower(self):
        expense = _expense(500)
        fresh = score_candidate(expense, _item('a', CostCategory.MATERIALS, 500))
        spent = score_candidate(expense, _item('b', CostCategory.MATERIALS, 500, allocated=500))
        assert fresh.confidence > spent.confidence

    def test_quote_item_measured_against_referenced_item(self):
        budget = _item('eli-1', CostCategory.MATERIALS, 500, allocated=480)
        quote = LineItem(
            id='qli-1', source_type=SourceType.QUOTE, source_id='q-1', project_id='p-1',
            category=CostCategory.MATERIALS, baseline_cost=Decimal('480'), estimate_line_item_id='eli-1',
        )
        allocated = build_allocated_map([budget, quote])
        assert allocated == {'eli-1': Decimal('480'), 'qli-1': Decimal('480')}

        expense = _expense(480)
        assert score_candidate(expense, quote).amount_points == 15
        assert score_candidate(expense, quote, allocated=allocated).amount_points == 0

        ranked = {c.line_item_id: c for c in rank_candidates(expense, [budget, quote])}
        assert ranked['qli-1'].amount_points == 0

    def test_unreferenced_quote_uses_own_allocation(self):
        quote = _item('qli-9', CostCategory.MATERIALS, 300, source_type=SourceType.QUOTE)
        assert build_allocated_map([quote]) == {'qli-9': Decimal('0')}


    def test_to_dict_output(self):
        scored = score_candidate(_expense(500), _item('eli-1', CostCategory.MATERIALS, 500))
        result = scored.to_dict()
        assert result['line_item_id'] == 'eli-1'
        assert result['confidence'] == 65
        assert result['breakdown']['amount'] == 15


class TestRanking:
    """Tests for ranking policy."""

    def test_category_match_outranks_exact_amount(self):
        items = [
            _item('equip', CostCategory.EQUIPMENT, 475, source_type=SourceType.QUOTE, payee='Big Iron Rentals'),
            _item('mat', CostCategory.MATERIALS, 500),
        ]
        ranking = rank_candidates(_expense(475, payee='Acme Supply'), items)
        assert ranking[0].line_item_id == 'mat'

    def test_source_priority(self):
        items = [
            _item('est', CostCategory.MATERIALS, 500, source_type=SourceType.ESTIMATE),
            _item('co', CostCategory.MATERIALS, 500, source_type=SourceType.CHANGE_ORDER),
            _item('quote', CostCategory.MATERIALS, 500, source_type=SourceType.QUOTE),
        ]
        ranking = rank_candidates(_expense(500), items)
        assert [c.line_item_id for c in ranking] == ['quote', 'co', 'est']

    def test_tie_broken_by_description_then_id(self):
        items = [
            _item('b', CostCategory.MATERIALS, 500, description='Zinc'),
            _item('c', CostCategory.MATERIALS, 500, description='Brick'),
            _item('a', CostCategory.MATERIALS, 500, description='Brick'),
        ]
        ranking = rank_candidates(_expense(500), items)
        assert [c.line_item_id for c in ranking] == ['a', 'c', 'b']

    def test_other_projects_excluded(self):
        items = [
            _item('mine', CostCategory.MATERIALS, 500),
            _item('theirs', CostCategory.MATERIALS, 500, project_id='p-2'),
        ]
        assert [c.line_item_id for c in rank_candidates(_expense(500), items)] == ['mine']


class TestSuggestLineItem:
    """Tests for the best-candidate suggestion."""

    def test_scenario_category_beats_amount(self):
        items = [
            _item('mat', CostCategory.MATERIALS, 500),
            _item('equip', CostCategory.EQUIPMENT, 475, payee='Heavy Haul LLC'),
        ]
        result = suggest_line_item(_expense(475, payee='Acme Supply'), items)
        assert result is not None
        assert result.line_item_id == 'mat'
        assert result.confidence == 65
        assert result.to_dict() == {
            'expense_id': 'e-1',
            'line_item_id': 'mat',
            'confidence': 65,
            'confidence_band': 'medium',
        }

    def test_below_threshold(self):
        items = [_item('equip', CostCategory.EQUIPMENT, 475)]
        assert suggest_line_item(_expense(475), items) is None

    def test_no_candidates(self):
        assert suggest_line_item(_expense(475), []) is None

    def test_deterministic(self):
        items = [
            _item('a', CostCategory.MATERIALS, 500, description='Lumber'),
            _item('b', CostCategory.MATERIALS, 480, source_type=SourceType.QUOTE, payee='Acme'),
            _item('c', CostCategory.EQUIPMENT, 475),
        ]
        expense = _expense(475, payee='Acme', description='lumber')
        first = suggest_line_item(expense, items)
        for _ in range(5):
            again = suggest_line_item(expense, list(reversed(items)))
            assert (again.line_item_id, again.confidence) == (first.line_item_id, first.confidence)

    def test_auto_allocatable(self):
        items = [_item('a', CostCategory.MATERIALS, 500, payee='Acme')]
        result = suggest_line_item(_expense(500, payee='Acme'), items)
        assert result.confidence >= get_config().auto_allocate_confidence
        assert result.is_auto_allocatable

    def test_batch(self):
        items = [_item('a', CostCategory.MATERIALS, 500)]
        results = compute_all_suggestions(
            [_expense(500, expense_id='e-1'), _expense(500, category='gas', expense_id='e-2')],
            items,
        )
        assert results['e-1'].line_item_id == 'a'
        assert results['e-2'] is None


class TestMonotonicity:
    """Better matches never score below worse ones."""

    @pytest.mark.parametrize("amount,expected_points", [
        (Decimal('500'), 15),
        (Decimal('470'), 10),
        (Decimal('420'), 5),
        (Decimal('100'), 0),
    ])
    def test_amount_points(self, amount, expected_points):
        scored = score_candidate(_expense(amount), _item('a', CostCategory.MATERIALS, 500))
        assert scored.amount_points == expected_points

    def test_payee_improves_confidence(self):
        item = _item('a', CostCategory.MATERIALS, 500, payee='Acme Supply')
        without = score_candidate(_expense(300), item)
        with_payee = score_candidate(_expense(300, payee='Acme Supply'), item)
        assert with_payee.confidence > without.confidence
