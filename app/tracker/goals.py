"""Goal engine — pure progress math over a HistorySeries, never raises.

Non-finite or missing inputs degrade to None ("unset" / "no data")
instead of raising: this feeds a progress display, not a transaction.
"""

from __future__ import annotations

from typing import Iterable

from app.tracker.history import HistorySeries
from app.tracker.models import Comparison, GoalProgress, PeriodGoal
from app.tracker.validation import finite_or_none

# Positional offsets for the day / week / month comparisons.
DAY_OFFSET = 1
WEEK_OFFSET = 7
MONTH_OFFSET = 30


def clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


# ---------------------------------------------------------------------------
# Remaining-to-goal
# ---------------------------------------------------------------------------

def remaining_to_final(current_weight: float | None, final_goal: float | None) -> float | None:
    """max(0, current - goal). None when the goal is unset (distinct from 0.0)."""
    current = finite_or_none(current_weight)
    goal = finite_or_none(final_goal)
    if current is None or goal is None:
        return None
    return max(0.0, current - goal)


def remaining_to_period(current_weight: float | None, period_goal: PeriodGoal | None) -> float | None:
    if period_goal is None:
        return None
    return remaining_to_final(current_weight, period_goal.target_weight)


# ---------------------------------------------------------------------------
# Period baseline & progress
# ---------------------------------------------------------------------------

def find_baseline(series: HistorySeries, start_date: str, end_date: str) -> float | None:
    """Starting weight for a period goal. First matching rule wins:

    1. sample exactly on start_date
    2. most recent sample strictly before start_date
    3. earliest sample within [start_date, end_date]
    4. earliest sample strictly after start_date
    """
    samples = series.ordered()
    if not samples or not start_date or not end_date:
        return None

    for s in samples:
        if s.date == start_date:
            return s.weight

    for s in reversed(samples):
        if s.date < start_date:
            return s.weight

    for s in samples:
        if start_date <= s.date <= end_date:
            return s.weight

    for s in samples:
        if s.date > start_date:
            return s.weight

    return None


def period_progress_ratio(
    current_weight: float | None,
    baseline: float | None,
    target: float | None,
) -> float | None:
    """Fraction (0–1) of the baseline→target distance travelled.

    Works for loss and gain goals alike. A zero-width goal
    (target == baseline) is binary: 1 when current == target, else 0.
    """
    current = finite_or_none(current_weight)
    base = finite_or_none(baseline)
    goal = finite_or_none(target)
    if current is None or base is None or goal is None:
        return None
    denom = goal - base
    if denom == 0:
        return 1.0 if current == goal else 0.0
    return clamp((current - base) / denom, 0.0, 1.0)


# ---------------------------------------------------------------------------
# Active period goal
# ---------------------------------------------------------------------------

def select_active_period_goal(
    goals: Iterable[PeriodGoal],
    today: str,
    preferred: PeriodGoal | None = None,
) -> PeriodGoal | None:
    """Pick the period goal to display.

    - ``preferred`` (the goal just saved) wins when it is among ``goals``
      by (start_date, end_date), or when ``goals`` is empty
    - otherwise a goal containing today, soonest end_date first
    - otherwise the goal with the latest end_date
    """
    candidates = list(goals)
    if preferred is not None:
        for g in candidates:
            if (g.start_date, g.end_date) == (preferred.start_date, preferred.end_date):
                return g
        if not candidates:
            return preferred

    if not candidates:
        return None

    containing = [g for g in candidates if g.start_date <= today <= g.end_date]
    if containing:
        return min(containing, key=lambda g: g.end_date)
    return max(candidates, key=lambda g: g.end_date)


# ---------------------------------------------------------------------------
# Comparisons
# ---------------------------------------------------------------------------

def compare(series: HistorySeries, n: int, current_weight: float | None = None) -> Comparison:
    """current - series[len-1-n]; has_data=False when the series is too short."""
    current = finite_or_none(series.current() if current_weight is None else current_weight)
    past = series.value_n_before(n)
    if current is None or past is None:
        return Comparison(diff=0.0, has_data=False)
    return Comparison(diff=current - past, has_data=True)


def build_progress(
    series: HistorySeries,
    final_goal: float | None,
    period_goal: PeriodGoal | None,
) -> GoalProgress:
    """Assemble the full progress snapshot for one user."""
    current = series.current()
    baseline = None
    ratio = None
    if period_goal is not None:
        baseline = find_baseline(series, period_goal.start_date, period_goal.end_date)
        ratio = period_progress_ratio(current, baseline, period_goal.target_weight)

    return GoalProgress(
        current_weight=current,
        final_goal_weight=finite_or_none(final_goal),
        final_remaining=remaining_to_final(current, final_goal),
        period_goal=period_goal,
        period_remaining=remaining_to_period(current, period_goal),
        baseline=baseline,
        progress_ratio=ratio,
        vs_yesterday=compare(series, DAY_OFFSET, current),
        vs_last_week=compare(series, WEEK_OFFSET, current),
        vs_last_month=compare(series, MONTH_OFFSET, current),
    )
