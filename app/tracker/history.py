"""Per-user weight history — one sample per date, ordered by date."""

from __future__ import annotations

from typing import Any, Iterable, Iterator

from app.tracker.datekeys import normalize_date_key
from app.tracker.models import WeightSample
from app.tracker.validation import finite_or_none, require_date_key, require_weight


class HistorySeries:
    """Ordered, deduplicated-by-date (date, weight) samples.

    Offsets are positional from the end of the sorted series, never
    calendar arithmetic: a skipped day does not shift comparisons.
    """

    def __init__(self, samples: Iterable[WeightSample] = ()) -> None:
        self._by_date: dict[str, float] = {}
        for sample in samples:
            self._by_date[sample.date] = sample.weight

    @classmethod
    def from_rows(cls, rows: Iterable[dict[str, Any]]) -> HistorySeries:
        """Build from ``weights`` rows (weight, recorded_at). Bad rows are skipped."""
        series = cls()
        for row in rows:
            key = normalize_date_key(row.get("recorded_at"))
            weight = finite_or_none(row.get("weight"))
            if key is None or weight is None:
                continue
            series._by_date[key] = weight
        return series

    def copy(self) -> HistorySeries:
        return HistorySeries(self.ordered())

    def upsert(self, date: str, weight: float) -> None:
        """Insert a sample, or replace the weight if the date already exists."""
        key = require_date_key(date)
        self._by_date[key] = require_weight(weight)

    def ordered(self) -> list[WeightSample]:
        return [WeightSample(date=d, weight=self._by_date[d]) for d in sorted(self._by_date)]

    def __iter__(self) -> Iterator[WeightSample]:
        return iter(self.ordered())

    def __len__(self) -> int:
        return len(self._by_date)

    def get(self, date: str) -> float | None:
        return self._by_date.get(date)

    def current(self) -> float:
        """Weight of the chronologically last sample, 0.0 when empty."""
        if not self._by_date:
            return 0.0
        return self._by_date[max(self._by_date)]

    def value_n_before(self, n: int) -> float | None:
        """Weight ``n`` positions before the last sample; None if len < n + 1."""
        if n < 0 or len(self._by_date) < n + 1:
            return None
        keys = sorted(self._by_date)
        return self._by_date[keys[len(keys) - 1 - n]]

    def between(self, start: str, end_exclusive: str) -> list[WeightSample]:
        return [s for s in self.ordered() if start <= s.date < end_exclusive]
