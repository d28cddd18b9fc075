"""
Spending Analyzer - Core parsing and aggregation logic.

Parses debit/credit card statements into transactions, classifies them with
the category engine and builds the dashboard summaries.
"""

import json
import math
import re
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Optional

from .category_engine import default_engine
from .logging_setup import get_logger
from .merchant_utils import simplify_merchant_name

logger = get_logger(__name__)

MONTH_ABBR = ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun', 'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec']
MONTH_NAMES = ['January', 'February', 'March', 'April', 'May', 'June',
               'July', 'August', 'September', 'October', 'November', 'December']

PERIODS = ('daily', 'weekly', 'monthly')
PERIOD_ROWS = 12
EXPORT_HEADERS = ['Date', 'Description', 'Category', 'Amount']


@dataclass(frozen=True)
class Transaction:
    """A single debit (spend) row from a statement."""

    id: str
    date: date
    description: str
    amount: float
    category: str
    source: str

    def to_dict(self):
        data = asdict(self)
        data['date'] = self.date.isoformat()
        return data


@dataclass
class AggregationFilter:
    """Query parameters for a filtered view. Unset fields pass everything."""

    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: str = ''
    category: str = ''

    @property
    def is_empty(self):
        return not (self.date_from or self.date_to or self.search or self.category)


# ============================================================================
# CURRENCY AND DATE FORMATTING
# ============================================================================

def format_currency_decimal(amount: float, currency_format: str = "${amount}") -> str:
    """Format amount with currency symbol/format (with 2 decimal places).

    Args:
        amount: The amount to format
        currency_format: Format string with {amount} placeholder, e.g. "${amount}" or "{amount} zł"

    Returns:
        Formatted currency string, e.g. "$1,234.50" or "1,234.50 zł"
    """
    formatted_num = f"{amount:,.2f}"
    return currency_format.format(amount=formatted_num)


def format_date(d):
    """Format a date as M/D/YYYY (no zero padding)."""
    return f"{d.month}/{d.day}/{d.year}"


def month_key(d):
    return d.strftime('%Y-%m')


def format_month_label(key):
    """'2024-03' -> "Mar '24"."""
    year, month = key.split('-')
    return f"{MONTH_ABBR[int(month) - 1]} '{year[2:]}"


# ============================================================================
# DATA PARSING
# ============================================================================

def parse_csv_line(line):
    """Split one CSV line into trimmed fields.

    A double quote toggles quoted mode; commas inside quotes are kept as
    text. Quote characters are dropped. A trailing comma adds an extra empty
    field. Unbalanced quotes never raise.
    """
    fields = []
    current = []
    in_quotes = False

    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == ',' and not in_quotes:
            fields.append(''.join(current).strip())
            current = []
        else:
            current.append(char)
    fields.append(''.join(current).strip())

    if line.endswith(','):
        fields.append('')

    return fields


def parse_date(date_str):
    """Parse M/D/YYYY (1- or 2-digit month and day, 4-digit year).

    Raises:
        ValueError: wrong number of components, short year or not a real
            calendar date
    """
    parts = [p.strip() for p in date_str.split('/')]
    if len(parts) != 3:
        raise ValueError(f"Expected M/D/YYYY, got {date_str!r}")
    if len(parts[2]) != 4:
        raise ValueError(f"Expected a 4-digit year, got {date_str!r}")
    month, day, year = (int(p) for p in parts)
    return date(year, month, day)


def parse_amount(amount_str):
    """Parse an amount string to float.

    Args:
        amount_str: String like "1,234.56", "$12.00" or "(100.00)"

    Returns:
        Float value of the amount
    """
    amount_str = amount_str.strip()

    # Handle parentheses notation for negative: (100.00) -> -100.00
    negative = False
    if amount_str.startswith('(') and amount_str.endswith(')'):
        negative = True
        amount_str = amount_str[1:-1]

    # Remove currency symbols and thousands separators
    amount_str = re.sub(r'[$€£¥]', '', amount_str).strip()
    amount_str = amount_str.replace(',', '')

    result = float(amount_str)
    return -result if negative else result


def _amount_or_zero(amount_str):
    """Debit/credit columns: anything unparseable counts as 0."""
    try:
        value = parse_amount(amount_str)
    except ValueError:
        return 0.0
    return value if math.isfinite(value) else 0.0


def parse_csv(content, source, engine=None):
    """Parse statement text into spending transactions.

    Expected columns: date (M/D/YYYY), description, debit, credit. Extra
    columns are ignored. Rows that are too short, have a bad date, carry a
    credit or have no positive debit are skipped.

    Args:
        content: Full CSV text
        source: Source identifier used for transaction ids
        engine: CategoryEngine, defaults to the built-in schema

    Returns:
        List of Transaction, in file order
    """
    engine = engine or default_engine()
    transactions = []
    skipped = 0

    for line in content.strip().split('\n'):
        line = line.rstrip('\r')
        if not line.strip():
            continue

        parts = parse_csv_line(line)
        if len(parts) < 4:
            skipped += 1
            continue

        date_str, description, debit_str, credit_str = parts[:4]

        try:
            txn_date = parse_date(date_str)
        except ValueError:
            skipped += 1
            continue

        debit = _amount_or_zero(debit_str)
        credit = _amount_or_zero(credit_str)

        # Spending only: payments and refunds are never tracked
        if debit <= 0 or credit != 0:
            skipped += 1
            continue

        description = description.strip()
        transactions.append(Transaction(
            id=f"{source}-{len(transactions)}",
            date=txn_date,
            description=description,
            amount=debit,
            category=engine.classify(description),
            source=source,
        ))

    logger.debug("%s: %d transactions, %d rows skipped", source, len(transactions), skipped)
    return transactions


def parse_csv_file(filepath, engine=None, source=None):
    """Read a statement file and parse it. The path is the default source id."""
    content = Path(filepath).read_text(encoding='utf-8-sig')
    return parse_csv(content, source or str(filepath), engine)


# ============================================================================
# FILTERING
# ============================================================================

def _as_date(value):
    if isinstance(value, datetime):
        return value.date()
    return value


def filter_transactions(transactions, flt=None):
    """Apply an AggregationFilter. Date bounds are inclusive whole days."""
    if flt is None or flt.is_empty:
        return list(transactions)

    date_from = _as_date(flt.date_from)
    date_to = _as_date(flt.date_to)
    search = flt.search.lower() if flt.search else ''

    filtered = []
    for txn in transactions:
        if date_from and txn.date < date_from:
            continue
        if date_to and txn.date > date_to:
            continue
        if search and search not in txn.description.lower() and search not in txn.category.lower():
            continue
        if flt.category and txn.category != flt.category:
            continue
        filtered.append(txn)
    return filtered


# ============================================================================
# AGGREGATION
# ============================================================================

def summarize(transactions, today=None):
    """Quick stats: total, count, distinct categories and this month's spend."""
    today = today or date.today()
    total = 0.0
    this_month_total = 0.0
    this_month_count = 0
    categories = set()

    for txn in transactions:
        total += txn.amount
        categories.add(txn.category)
        if txn.date.month == today.month and txn.date.year == today.year:
            this_month_total += txn.amount
            this_month_count += 1

    return {
        'total': total,
        'count': len(transactions),
        'category_count': len(categories),
        'this_month_total': this_month_total,
        'this_month_count': this_month_count,
    }


def period_key(d, period):
    """Bucket key for a date.

    daily:   2024-01-05
    weekly:  2024-W01-01  (year, week-of-month and month of the week's Sunday)
    monthly: 2024-01
    """
    if period == 'daily':
        return d.isoformat()
    if period == 'weekly':
        week_start = d - timedelta(days=(d.weekday() + 1) % 7)
        week_of_month = math.ceil(week_start.day / 7)
        return f"{week_start.year}-W{week_of_month:02d}-{week_start.month:02d}"
    if period == 'monthly':
        return month_key(d)
    raise ValueError(f"Unknown period: {period!r} (expected one of {', '.join(PERIODS)})")


def group_by_period(transactions, period='daily'):
    """Sum amounts per period bucket. Keys come back in ascending order."""
    grouped = defaultdict(float)
    for txn in transactions:
        grouped[period_key(txn.date, period)] += txn.amount
    return {key: grouped[key] for key in sorted(grouped)}


def format_period_label(key, period):
    """Short chart label for a bucket key."""
    if period == 'daily':
        _, month, day = key.split('-')
        return f"{month}/{day}"
    if period == 'weekly':
        return f"Week {key.split('-')[1].replace('W', '')}"
    if period == 'monthly':
        return MONTH_ABBR[int(key.split('-')[1]) - 1]
    return key


def _sort_entries(entries, sort_by):
    if sort_by == 'amount':
        return sorted(entries, key=lambda item: item[1]['total'], reverse=True)
    if sort_by == 'name':
        return sorted(entries, key=lambda item: item[0].casefold())
    raise ValueError(f"Unknown sort: {sort_by!r} (expected 'amount' or 'name')")


def _by_total(mapping):
    return sorted(mapping.items(), key=lambda item: item[1]['total'], reverse=True)


def category_rollups(transactions, engine=None, sort_by='amount', exclude=(), aliases=None):
    """Group transactions by display category.

    Each entry carries total, count, per-month totals, per-merchant
    totals/counts and, for grouped categories, the underlying sub-category
    totals/counts.

    Returns:
        List of (display_category, data) tuples sorted by total (descending)
        or name.
    """
    engine = engine or default_engine()
    by_category = defaultdict(lambda: {
        'total': 0.0,
        'count': 0,
        'monthly': defaultdict(float),
        'merchants': defaultdict(lambda: {'total': 0.0, 'count': 0}),
        'sub_categories': defaultdict(lambda: {'total': 0.0, 'count': 0}),
        'transactions': [],
    })

    for txn in transactions:
        display = engine.display_category(txn.category)
        data = by_category[display]
        data['total'] += txn.amount
        data['count'] += 1
        data['transactions'].append(txn)

        if display != txn.category:
            data['sub_categories'][txn.category]['total'] += txn.amount
            data['sub_categories'][txn.category]['count'] += 1

        data['monthly'][month_key(txn.date)] += txn.amount

        merchant = simplify_merchant_name(txn.description, aliases)
        data['merchants'][merchant]['total'] += txn.amount
        data['merchants'][merchant]['count'] += 1

    rollups = []
    for name, data in by_category.items():
        rollups.append((name, {
            'total': data['total'],
            'count': data['count'],
            'monthly': dict(data['monthly']),
            'merchants': {k: dict(v) for k, v in data['merchants'].items()},
            'sub_categories': {k: dict(v) for k, v in data['sub_categories'].items()},
            'transactions': data['transactions'],
        }))

    rollups = _sort_entries(rollups, sort_by)
    return [(name, data) for name, data in rollups if name not in exclude]


def category_cards(transactions, engine=None, sort_by='amount', exclude=('Subscriptions',),
                   recent_months=6, top_n=3, today=None, aliases=None):
    """Dashboard cards: category rollups decorated for display.

    Percentages are relative to the total of all given transactions,
    including excluded categories.
    """
    engine = engine or default_engine()
    today = today or date.today()
    current_month = month_key(today)
    grand_total = sum(t.amount for t in transactions)

    cards = []
    for name, data in category_rollups(transactions, engine, sort_by, exclude, aliases):
        config = engine.display_config(name)
        months = sorted(data['monthly'], reverse=True)
        cards.append({
            'category': name,
            'color': config['color'],
            'icon': config['icon'],
            'total': data['total'],
            'count': data['count'],
            'percent': (data['total'] / grand_total * 100) if grand_total else 0.0,
            'monthly_avg': data['total'] / len(data['monthly']) if data['monthly'] else 0.0,
            'recent_months': [
                {
                    'month': key,
                    'label': MONTH_ABBR[int(key[5:]) - 1],
                    'total': data['monthly'][key],
                    'is_current': key == current_month,
                }
                for key in months[:recent_months]
            ],
            'top_merchants': _by_total(data['merchants'])[:top_n],
            'sub_categories': _by_total(data['sub_categories']),
        })
    return cards


def merchant_rollups(transactions, aliases=None):
    """Totals and counts per normalized merchant, largest first."""
    merchants = defaultdict(lambda: {'total': 0.0, 'count': 0})
    for txn in transactions:
        name = simplify_merchant_name(txn.description, aliases)
        merchants[name]['total'] += txn.amount
        merchants[name]['count'] += 1
    return _by_total({k: dict(v) for k, v in merchants.items()})


def top_merchants(transactions, limit=5, aliases=None):
    return merchant_rollups(transactions, aliases)[:limit]


def monthly_totals(transactions):
    """{YYYY-MM: total} in chronological order."""
    by_month = defaultdict(float)
    for txn in transactions:
        by_month[month_key(txn.date)] += txn.amount
    return {key: by_month[key] for key in sorted(by_month)}


def monthly_stats(transactions):
    """Average/highest/lowest monthly spend plus per-month variance.

    Each month gets a relative spend level: 'low', 'medium' or 'high',
    based on where it sits between the lowest and highest month.
    """
    totals = monthly_totals(transactions)
    if not totals:
        return {'average': 0.0, 'highest': 0.0, 'lowest': 0.0, 'months': []}

    values = list(totals.values())
    average = sum(values) / len(values)
    highest = max(values)
    lowest = min(values)
    spread = (highest - lowest) or 1

    months = []
    for key, value in totals.items():
        ratio = (value - lowest) / spread
        if ratio < 0.33:
            level = 'low'
        elif ratio < 0.66:
            level = 'medium'
        else:
            level = 'high'
        diff = value - average
        months.append({
            'month': key,
            'label': format_month_label(key),
            'total': value,
            'diff': diff,
            'diff_percent': (diff / average * 100) if average else 0.0,
            'level': level,
        })

    return {'average': average, 'highest': highest, 'lowest': lowest, 'months': months}


def _date_desc(transactions):
    return sorted(transactions, key=lambda t: t.date, reverse=True)


def monthly_breakdown(transactions, engine=None):
    """Per-month view by display category, most recent month first."""
    engine = engine or default_engine()
    by_month = defaultdict(lambda: {
        'total': 0.0,
        'categories': defaultdict(float),
        'category_transactions': defaultdict(list),
        'sub_categories': defaultdict(lambda: defaultdict(lambda: {'total': 0.0, 'transactions': []})),
        'transactions': [],
    })

    for txn in transactions:
        display = engine.display_category(txn.category)
        data = by_month[month_key(txn.date)]
        data['total'] += txn.amount
        data['categories'][display] += txn.amount
        data['category_transactions'][display].append(txn)
        if display != txn.category:
            sub = data['sub_categories'][display][txn.category]
            sub['total'] += txn.amount
            sub['transactions'].append(txn)
        data['transactions'].append(txn)

    breakdown = []
    for key in sorted(by_month, reverse=True):
        data = by_month[key]
        year, month = key.split('-')
        breakdown.append((key, {
            'label': f"{MONTH_NAMES[int(month) - 1]} {year}",
            'total': data['total'],
            'count': len(data['transactions']),
            'categories': sorted(data['categories'].items(), key=lambda item: item[1], reverse=True),
            'category_transactions': {
                cat: _date_desc(txns) for cat, txns in data['category_transactions'].items()
            },
            'sub_categories': {
                display: _by_total({k: dict(v) for k, v in subs.items()})
                for display, subs in data['sub_categories'].items()
            },
            'transactions': data['transactions'],
        }))
    return breakdown


def subscription_summary(transactions, category='Subscriptions', limit=12, today=None, aliases=None):
    """Subscription spend: total, months (most recent first) and top merchants."""
    today = today or date.today()
    subscriptions = [t for t in transactions if t.category == category]

    monthly = defaultdict(lambda: {'total': 0.0, 'transactions': []})
    for txn in subscriptions:
        entry = monthly[month_key(txn.date)]
        entry['total'] += txn.amount
        entry['transactions'].append(txn)

    return {
        'total': sum(t.amount for t in subscriptions),
        'count': len(subscriptions),
        'current_month': month_key(today),
        'monthly': {key: dict(monthly[key]) for key in sorted(monthly, reverse=True)},
        'merchants': merchant_rollups(subscriptions, aliases)[:limit],
    }


def category_distribution(transactions, engine=None):
    """Totals per underlying category with color and share, largest first."""
    engine = engine or default_engine()
    totals = defaultdict(float)
    for txn in transactions:
        totals[txn.category] += txn.amount

    grand_total = sum(totals.values())
    return [
        {
            'category': cat,
            'total': total,
            'percent': (total / grand_total * 100) if grand_total else 0.0,
            'color': engine.category_config(cat)['color'],
        }
        for cat, total in sorted(totals.items(), key=lambda item: item[1], reverse=True)
    ]


def recent_transactions(transactions, limit=8):
    return _date_desc(transactions)[:limit]


def analyze_transactions(transactions, engine=None, today=None, aliases=None, period='daily'):
    """Compute every dashboard summary for a (filtered) transaction set.

    `period` picks the bucket size for the spending-over-time series.
    """
    engine = engine or default_engine()
    today = today or date.today()
    return {
        'summary': summarize(transactions, today),
        'period': period,
        'by_period': group_by_period(transactions, period),
        'monthly_stats': monthly_stats(transactions),
        'by_month': monthly_totals(transactions),
        'categories': category_cards(transactions, engine, today=today, aliases=aliases),
        'distribution': category_distribution(transactions, engine),
        'subscriptions': subscription_summary(transactions, today=today, aliases=aliases),
        'top_merchants': top_merchants(transactions, aliases=aliases),
        'monthly_breakdown': monthly_breakdown(transactions, engine),
        'recent': recent_transactions(transactions),
    }


# ============================================================================
# EXPORT FUNCTIONS
# ============================================================================

def export_rows(transactions):
    """Rows of [M/D/YYYY, "description", category, amount with 2 decimals]."""
    rows = []
    for txn in transactions:
        description = txn.description.replace('"', '""')
        rows.append([
            format_date(txn.date),
            f'"{description}"',
            txn.category,
            f"{txn.amount:.2f}",
        ])
    return rows


def export_csv(transactions):
    """CSV text for a transaction set, or '' when there is nothing to export."""
    if not transactions:
        return ''
    lines = [','.join(EXPORT_HEADERS)]
    lines.extend(','.join(row) for row in export_rows(transactions))
    return '\n'.join(lines)


def export_filename(today=None):
    today = today or date.today()
    return f"spending-export-{format_date(today).replace('/', '-')}.csv"


def _json_default(value):
    if isinstance(value, Transaction):
        return value.to_dict()
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def export_json(stats, indent=2):
    """Serialize analyze_transactions() output."""
    return json.dumps(stats, indent=indent, default=_json_default, ensure_ascii=False)


def print_summary(stats, title="Spending Analysis", currency_format="${amount}"):
    """Print analysis summary."""
    def fmt(amount):
        return format_currency_decimal(amount, currency_format)

    summary = stats['summary']
    monthly = stats['monthly_stats']

    print("=" * 80)
    print(title.upper())
    print("=" * 80)

    print(f"\nTotal Spent:                 {fmt(summary['total']):>14}")
    print(f"This Month:                  {fmt(summary['this_month_total']):>14}")
    print(f"Transactions:                {summary['count']:>14,}")
    print(f"Categories:                  {summary['category_count']:>14}")

    if summary['count'] == 0:
        return

    # =========================================================================
    # MONTHLY SPEND
    # =========================================================================
    print("\n" + "=" * 80)
    print("MONTHLY SPEND")
    print("=" * 80)
    print(f"\n{'Month':<12} {'Total':>14} {'vs Avg':>9}  Level")
    print("-" * 50)
    for month in monthly['months']:
        print(f"{month['label']:<12} {fmt(month['total']):>14} {month['diff_percent']:>+8.0f}%  {month['level']}")
    print("-" * 50)
    print(f"{'Average':<12} {fmt(monthly['average']):>14}")
    print(f"{'Highest':<12} {fmt(monthly['highest']):>14}")
    print(f"{'Lowest':<12} {fmt(monthly['lowest']):>14}")

    # =========================================================================
    # SPENDING OVER TIME (most recent buckets)
    # =========================================================================
    period = stats['period']
    buckets = list(stats['by_period'].items())[-PERIOD_ROWS:]
    print("\n" + "=" * 80)
    print(f"SPENDING OVER TIME ({period.upper()})")
    print("=" * 80)
    for key, total in buckets:
        print(f"{key:<14} {format_period_label(key, period):<10} {fmt(total):>14}")

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================
    subs = stats['subscriptions']
    if subs['count']:
        print("\n" + "=" * 80)
        print(f"SUBSCRIPTIONS ({fmt(subs['total'])})")
        print("=" * 80)
        for name, data in subs['merchants']:
            print(f"  {name[:40]:<40} {fmt(data['total']):>14} {data['count']:>4}x")

    # =========================================================================
    # CATEGORY BREAKDOWN
    # =========================================================================
    print("\n" + "=" * 80)
    print("SPENDING BY CATEGORY")
    print("=" * 80)
    print(f"\n{'Category':<28} {'Total':>14} {'% of Total':>10} {'Per Month':>14}")
    print("-" * 70)
    for card in stats['categories']:
        print(f"{card['icon']} {card['category'][:26]:<26} {fmt(card['total']):>14} "
              f"{card['percent']:>9.1f}% {fmt(card['monthly_avg']):>14}")
        for sub_name, sub in card['sub_categories']:
            print(f"    {sub_name[:24]:<24} {fmt(sub['total']):>14}")

    # =========================================================================
    # TOP MERCHANTS
    # =========================================================================
    print("\n" + "=" * 80)
    print("TOP MERCHANTS")
    print("=" * 80)
    for rank, (name, data) in enumerate(stats['top_merchants'], 1):
        plural = 's' if data['count'] != 1 else ''
        print(f"{rank:>2}. {name[:40]:<40} {fmt(data['total']):>14}  {data['count']} transaction{plural}")
