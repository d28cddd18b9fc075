"""
In-memory spending session.

Holds the loaded transactions and the active filter. All mutation goes
through add_transactions(), clear() and apply_filter().
"""

from collections import Counter
from typing import Dict, List, Optional, Tuple

from .analyzer import AggregationFilter, Transaction, filter_transactions, parse_csv, parse_csv_file
from .category_engine import CategoryEngine, default_engine
from .logging_setup import get_logger

logger = get_logger(__name__)


class SpendingSession:
    """Transactions loaded so far plus the current filtered view."""

    def __init__(self, engine: Optional[CategoryEngine] = None):
        self.engine = engine or default_engine()
        self.transactions: List[Transaction] = []
        self.loaded_files: List[str] = []
        self.filter = AggregationFilter()
        self.filtered: List[Transaction] = []
        self._ids = set()

    def add_transactions(self, transactions: List[Transaction], source: str) -> int:
        """Merge parsed transactions, skipping ids already present.

        Returns:
            Number of transactions actually added
        """
        if source not in self.loaded_files:
            self.loaded_files.append(source)

        added = 0
        for txn in transactions:
            if txn.id in self._ids:
                continue
            self._ids.add(txn.id)
            self.transactions.append(txn)
            added += 1

        # Newest first; stable for same-day transactions
        self.transactions.sort(key=lambda t: t.date, reverse=True)
        self._refresh()
        return added

    def load_text(self, content: str, source: str) -> int:
        return self.add_transactions(parse_csv(content, source, self.engine), source)

    def load_file(self, filepath, source: Optional[str] = None) -> int:
        """Parse and add one statement file. Read errors propagate."""
        source = source or str(filepath)
        return self.add_transactions(parse_csv_file(filepath, self.engine, source), source)

    def load_files(self, sources) -> Tuple[int, List[Tuple[str, str]]]:
        """Load several files, continuing past unreadable ones.

        Args:
            sources: Iterable of paths or (path, source_id) pairs

        Returns:
            (transactions added, [(path, error message), ...])
        """
        added = 0
        failures = []
        for entry in sources:
            filepath, source = entry if isinstance(entry, tuple) else (entry, None)
            try:
                added += self.load_file(filepath, source)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Failed to load %s: %s", filepath, e)
                failures.append((str(filepath), str(e)))
        return added, failures

    def clear(self) -> None:
        self.transactions = []
        self.loaded_files = []
        self.filtered = []
        self._ids = set()

    def apply_filter(self, flt: Optional[AggregationFilter] = None, **kwargs) -> List[Transaction]:
        """Set the active filter (object or keyword fields) and return the view."""
        if flt is None:
            flt = AggregationFilter(**kwargs)
        self.filter = flt
        self._refresh()
        return self.filtered

    def _refresh(self) -> None:
        self.filtered = filter_transactions(self.transactions, self.filter)

    def file_counts(self) -> Dict[str, int]:
        """Transactions per loaded file, in load order."""
        counts = Counter(t.source for t in self.transactions)
        return {name: counts.get(name, 0) for name in self.loaded_files}

    def categories(self) -> List[str]:
        """Distinct categories present, sorted."""
        return sorted({t.category for t in self.transactions})

    def __len__(self):
        return len(self.transactions)
