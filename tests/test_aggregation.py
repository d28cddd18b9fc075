"""Tests for filtering, aggregation and export."""

import json
from datetime import date, datetime

import pytest

from spendscope.analyzer import (
    AggregationFilter,
    Transaction,
    analyze_transactions,
    category_cards,
    category_distribution,
    category_rollups,
    export_csv,
    export_filename,
    export_json,
    export_rows,
    filter_transactions,
    format_period_label,
    group_by_period,
    merchant_rollups,
    monthly_breakdown,
    monthly_stats,
    period_key,
    print_summary,
    recent_transactions,
    subscription_summary,
    summarize,
)
from spendscope.category_engine import parse_categories

TODAY = date(2024, 3, 15)


def txn(id, d, description, amount, category):
    return Transaction(id, d, description, amount, category, 'a')


TXNS = [
    txn('a-0', date(2024, 1, 5), 'SUSHI TOWN', 30.0, 'Sushi'),
    txn('a-1', date(2024, 1, 20), 'PIZZA PLACE', 20.0, 'Pizza'),
    txn('a-2', date(2024, 1, 31), 'AMZN Mktp CA*2K1AB3', 50.0, 'Shopping'),
    txn('a-3', date(2024, 2, 2), 'Amazon.ca', 25.0, 'Shopping'),
    txn('a-4', date(2024, 2, 14), 'NETFLIX.COM', 15.0, 'Subscriptions'),
    txn('a-5', date(2024, 3, 1), 'SUSHI TOWN', 40.0, 'Sushi'),
]


@pytest.fixture
def engine():
    return parse_categories('''
categories:
  Sushi: {keywords: [sushi], color: '#111111'}
  Pizza: {keywords: [pizza]}
  Shopping: {keywords: [amazon, amzn], color: '#222222', icon: 'S'}
  Subscriptions: {patterns: [netflix]}
groups:
  Restaurants:
    children: [Sushi, Pizza]
    color: '#f43f5e'
    icon: 'R'
''')


def ids(transactions):
    return [t.id for t in transactions]


class TestFilter:
    """Tests for filter_transactions."""

    def test_empty_filter_passes_everything(self):
        assert filter_transactions(TXNS) == TXNS
        assert filter_transactions(TXNS, AggregationFilter()) == TXNS
        assert AggregationFilter().is_empty

    def test_date_bounds_are_inclusive(self):
        flt = AggregationFilter(date_from=date(2024, 1, 1), date_to=date(2024, 1, 31))
        assert ids(filter_transactions(TXNS, flt)) == ['a-0', 'a-1', 'a-2']

    def test_datetime_bounds_use_whole_days(self):
        flt = AggregationFilter(date_to=datetime(2024, 1, 31, 0, 0))
        assert ids(filter_transactions(TXNS, flt)) == ['a-0', 'a-1', 'a-2']

    def test_search_description_case_insensitive(self):
        flt = AggregationFilter(search='amazon')
        assert ids(filter_transactions(TXNS, flt)) == ['a-3']

    def test_search_matches_category(self):
        flt = AggregationFilter(search='SUB')
        assert ids(filter_transactions(TXNS, flt)) == ['a-4']

    def test_category_is_exact(self):
        assert ids(filter_transactions(TXNS, AggregationFilter(category='Sushi'))) == ['a-0', 'a-5']
        assert filter_transactions(TXNS, AggregationFilter(category='sushi')) == []

    def test_filters_combine(self):
        flt = AggregationFilter(date_from=date(2024, 2, 1), category='Sushi')
        assert ids(filter_transactions(TXNS, flt)) == ['a-5']


class TestSummarize:
    """Tests for summarize."""

    def test_totals(self):
        stats = summarize(TXNS, today=TODAY)
        assert stats['total'] == 180.0
        assert stats['count'] == 6
        assert stats['category_count'] == 4
        assert stats['this_month_total'] == 40.0
        assert stats['this_month_count'] == 1

    def test_empty(self):
        stats = summarize([], today=TODAY)
        assert stats == {
            'total': 0.0,
            'count': 0,
            'category_count': 0,
            'this_month_total': 0.0,
            'this_month_count': 0,
        }


class TestPeriods:
    """Tests for period bucketing."""

    def test_daily_and_monthly_keys(self):
        assert period_key(date(2024, 1, 5), 'daily') == '2024-01-05'
        assert period_key(date(2024, 1, 5), 'monthly') == '2024-01'

    def test_weekly_key_uses_starting_sunday(self):
        # Sunday itself
        assert period_key(date(2024, 1, 14), 'weekly') == '2024-W02-01'
        # Saturday belongs to the previous Sunday
        assert period_key(date(2024, 1, 20), 'weekly') == '2024-W02-01'
        # Week starting in the previous year
        assert period_key(date(2024, 1, 5), 'weekly') == '2023-W05-12'

    def test_unknown_period(self):
        with pytest.raises(ValueError):
            period_key(date(2024, 1, 5), 'yearly')

    def test_group_by_month(self):
        assert group_by_period(TXNS, 'monthly') == {
            '2024-01': 100.0,
            '2024-02': 40.0,
            '2024-03': 40.0,
        }

    def test_group_by_week_is_sorted(self):
        grouped = group_by_period(TXNS, 'weekly')
        assert list(grouped) == sorted(grouped)
        assert grouped['2023-W05-12'] == 30.0
        assert sum(grouped.values()) == pytest.approx(180.0)

    def test_group_empty(self):
        assert group_by_period([], 'weekly') == {}

    def test_period_labels(self):
        assert format_period_label('2024-01-05', 'daily') == '01/05'
        assert format_period_label('2024-W02-01', 'weekly') == 'Week 02'
        assert format_period_label('2024-03', 'monthly') == 'Mar'


class TestCategoryRollups:
    """Tests for category_rollups and category_cards."""

    def test_grouped_totals(self, engine):
        rollups = dict(category_rollups(TXNS, engine))
        restaurants = rollups['Restaurants']
        assert restaurants['total'] == 90.0
        assert restaurants['count'] == 3
        assert restaurants['monthly'] == {'2024-01': 50.0, '2024-03': 40.0}
        assert restaurants['sub_categories'] == {
            'Sushi': {'total': 70.0, 'count': 2},
            'Pizza': {'total': 20.0, 'count': 1},
        }
        assert restaurants['merchants']['SUSHI TOWN'] == {'total': 70.0, 'count': 2}
        assert rollups['Shopping']['sub_categories'] == {}
        assert rollups['Shopping']['merchants'] == {'Amazon': {'total': 75.0, 'count': 2}}

    def test_totals_add_up(self, engine):
        rollups = category_rollups(TXNS, engine)
        assert sum(data['total'] for _, data in rollups) == pytest.approx(180.0)
        assert sum(data['count'] for _, data in rollups) == len(TXNS)

    def test_sort_by_amount_and_name(self, engine):
        subset = TXNS[2:5] + [txn('b-0', date(2024, 2, 1), 'CAR WASH', 5.0, 'Auto')]
        by_amount = [name for name, _ in category_rollups(subset, engine, sort_by='amount')]
        by_name = [name for name, _ in category_rollups(subset, engine, sort_by='name')]
        assert by_amount == ['Shopping', 'Subscriptions', 'Auto']
        assert by_name == ['Auto', 'Shopping', 'Subscriptions']

    def test_equal_totals_keep_first_seen_order(self, engine):
        tied = [
            txn('t-0', date(2024, 1, 1), 'PIZZA PLACE', 10.0, 'Pizza'),
            txn('t-1', date(2024, 1, 2), 'AMAZON', 10.0, 'Shopping'),
        ]
        assert [name for name, _ in category_rollups(tied, engine)] == ['Restaurants', 'Shopping']

    def test_unknown_sort(self, engine):
        with pytest.raises(ValueError):
            category_rollups(TXNS, engine, sort_by='date')

    def test_exclude(self, engine):
        names = [name for name, _ in category_rollups(TXNS, engine, exclude=('Subscriptions',))]
        assert names == ['Restaurants', 'Shopping']

    def test_empty(self, engine):
        assert category_rollups([], engine) == []
        assert category_cards([], engine, today=TODAY) == []

    def test_cards(self, engine):
        cards = category_cards(TXNS, engine, today=TODAY)
        assert [c['category'] for c in cards] == ['Restaurants', 'Shopping']

        restaurants = cards[0]
        assert restaurants['color'] == '#f43f5e'
        assert restaurants['icon'] == 'R'
        assert restaurants['percent'] == pytest.approx(50.0)
        assert restaurants['monthly_avg'] == pytest.approx(45.0)
        assert [m['month'] for m in restaurants['recent_months']] == ['2024-03', '2024-01']
        assert restaurants['recent_months'][0]['is_current']
        assert restaurants['recent_months'][1]['label'] == 'Jan'
        assert [name for name, _ in restaurants['top_merchants']] == ['SUSHI TOWN', 'PIZZA PLACE']
        assert [name for name, _ in restaurants['sub_categories']] == ['Sushi', 'Pizza']

        shopping = cards[1]
        assert shopping['icon'] == 'S'
        assert shopping['percent'] == pytest.approx(75.0 / 180.0 * 100)


class TestMerchants:
    """Tests for merchant_rollups."""

    def test_aliases_merge_descriptions(self):
        names = [(name, data['total']) for name, data in merchant_rollups(TXNS)]
        assert names == [
            ('Amazon', 75.0),
            ('SUSHI TOWN', 70.0),
            ('PIZZA PLACE', 20.0),
            ('NETFLIX.COM', 15.0),
        ]


class TestMonthlyStats:
    """Tests for monthly_stats."""

    def test_levels_and_variance(self):
        stats = monthly_stats(TXNS)
        assert stats['average'] == pytest.approx(60.0)
        assert stats['highest'] == 100.0
        assert stats['lowest'] == 40.0

        jan, feb, mar = stats['months']
        assert jan['month'] == '2024-01'
        assert jan['label'] == "Jan '24"
        assert jan['level'] == 'high'
        assert jan['diff'] == pytest.approx(40.0)
        assert jan['diff_percent'] == pytest.approx(66.666, rel=1e-3)
        assert feb['level'] == 'low'
        assert feb['diff_percent'] == pytest.approx(-33.333, rel=1e-3)
        assert mar['level'] == 'low'

    def test_single_month(self):
        stats = monthly_stats(TXNS[:1])
        assert stats['average'] == stats['highest'] == stats['lowest'] == 30.0
        assert stats['months'][0]['level'] == 'low'
        assert stats['months'][0]['diff_percent'] == 0.0

    def test_empty(self):
        assert monthly_stats([]) == {'average': 0.0, 'highest': 0.0, 'lowest': 0.0, 'months': []}


class TestMonthlyBreakdown:
    """Tests for monthly_breakdown."""

    def test_most_recent_first(self, engine):
        breakdown = monthly_breakdown(TXNS, engine)
        assert [key for key, _ in breakdown] == ['2024-03', '2024-02', '2024-01']
        march = breakdown[0][1]
        assert march['label'] == 'March 2024'
        assert march['total'] == 40.0
        assert march['count'] == 1

    def test_january_categories(self, engine):
        january = dict(monthly_breakdown(TXNS, engine))['2024-01']
        # Restaurants and Shopping tie at 50; first seen stays first
        assert january['categories'] == [('Restaurants', 50.0), ('Shopping', 50.0)]
        assert ids(january['category_transactions']['Restaurants']) == ['a-1', 'a-0']
        subs = january['sub_categories']['Restaurants']
        assert [(name, data['total']) for name, data in subs] == [('Sushi', 30.0), ('Pizza', 20.0)]
        assert 'Shopping' not in january['sub_categories']


class TestSubscriptions:
    """Tests for subscription_summary."""

    def test_summary(self):
        subs = subscription_summary(TXNS, today=TODAY)
        assert subs['total'] == 15.0
        assert subs['count'] == 1
        assert subs['current_month'] == '2024-03'
        assert list(subs['monthly']) == ['2024-02']
        assert subs['merchants'] == [('NETFLIX.COM', {'total': 15.0, 'count': 1})]

    def test_none(self):
        subs = subscription_summary(TXNS[:2], today=TODAY)
        assert subs['total'] == 0
        assert subs['monthly'] == {}
        assert subs['merchants'] == []


class TestDistributionAndRecent:
    """Tests for category_distribution and recent_transactions."""

    def test_distribution_uses_underlying_categories(self, engine):
        dist = category_distribution(TXNS, engine)
        assert [d['category'] for d in dist] == ['Shopping', 'Sushi', 'Pizza', 'Subscriptions']
        assert dist[0]['color'] == '#222222'
        assert dist[1]['color'] == '#111111'
        assert dist[2]['color'] == '#64748b'
        assert sum(d['percent'] for d in dist) == pytest.approx(100.0)

    def test_recent(self):
        assert ids(recent_transactions(TXNS, limit=2)) == ['a-5', 'a-4']


class TestAnalyze:
    """Tests for the combined analysis and its outputs."""

    def test_all_sections_present(self, engine):
        stats = analyze_transactions(TXNS, engine, today=TODAY)
        assert set(stats) == {
            'summary', 'period', 'by_period', 'monthly_stats', 'by_month', 'categories',
            'distribution', 'subscriptions', 'top_merchants', 'monthly_breakdown', 'recent',
        }
        assert stats['summary']['total'] == 180.0
        assert stats['top_merchants'][0][0] == 'Amazon'
        assert stats['period'] == 'daily'
        assert list(stats['by_period'])[0] == '2024-01-05'

    def test_period_selects_buckets(self, engine):
        stats = analyze_transactions(TXNS, engine, today=TODAY, period='weekly')
        assert stats['period'] == 'weekly'
        assert stats['by_period'] == group_by_period(TXNS, 'weekly')

        with pytest.raises(ValueError):
            analyze_transactions(TXNS, engine, today=TODAY, period='yearly')

    def test_empty_set(self, engine):
        stats = analyze_transactions([], engine, today=TODAY)
        assert stats['summary']['count'] == 0
        assert stats['categories'] == []
        assert stats['monthly_breakdown'] == []
        assert stats['recent'] == []

    def test_json_round_trip(self, engine):
        stats = analyze_transactions(TXNS, engine, today=TODAY)
        data = json.loads(export_json(stats))
        assert data['summary']['total'] == 180.0
        assert data['recent'][0]['date'] == '2024-03-01'

    def test_print_summary(self, engine, capsys):
        print_summary(analyze_transactions(TXNS, engine, today=TODAY), title='Test Report')
        out = capsys.readouterr().out
        assert 'TEST REPORT' in out
        assert 'SPENDING BY CATEGORY' in out
        assert 'Restaurants' in out
        assert '$180.00' in out
        assert 'SPENDING OVER TIME (DAILY)' in out
        assert '2024-03-01' in out


class TestExport:
    """Tests for CSV export."""

    def test_rows(self):
        assert export_rows(TXNS[2:3]) == [['1/31/2024', '"AMZN Mktp CA*2K1AB3"', 'Shopping', '50.00']]

    def test_inner_quotes_are_doubled(self):
        row = export_rows([txn('q-0', date(2024, 1, 2), 'Joe\'s "Diner"', 9.5, 'Other')])[0]
        assert row[1] == '"Joe\'s ""Diner"""'
        assert row[3] == '9.50'

    def test_csv(self):
        lines = export_csv(TXNS[:2]).split('\n')
        assert lines == [
            'Date,Description,Category,Amount',
            '1/5/2024,"SUSHI TOWN",Sushi,30.00',
            '1/20/2024,"PIZZA PLACE",Pizza,20.00',
        ]

    def test_csv_empty(self):
        assert export_csv([]) == ''

    def test_filename(self):
        assert export_filename(date(2024, 3, 5)) == 'spending-export-3-5-2024.csv'
