"""Tests for DateKey helpers and user identities."""

from __future__ import annotations

import re
from datetime import date, datetime, timezone

from app.tracker.datekeys import month_bounds, month_day_label, normalize_date_key, to_date_key, today_key
from app.tracker.users import USERS, UserIdentity


class TestToDateKey:
    def test_date(self):
        assert to_date_key(date(2024, 3, 1)) == "2024-03-01"

    def test_datetime_drops_time(self):
        assert to_date_key(datetime(2024, 3, 1, 23, 59, tzinfo=timezone.utc)) == "2024-03-01"


class TestNormalizeDateKey:
    def test_plain_key(self):
        assert normalize_date_key("2024-01-05") == "2024-01-05"

    def test_timestamp_string_cut_to_day(self):
        assert normalize_date_key("2024-01-05T10:00:00+09:00") == "2024-01-05"

    def test_date_object(self):
        assert normalize_date_key(date(2024, 1, 5)) == "2024-01-05"

    def test_impossible_date(self):
        assert normalize_date_key("2024-02-30") is None

    def test_garbage(self):
        assert normalize_date_key("") is None
        assert normalize_date_key("yesterday") is None
        assert normalize_date_key(None) is None
        assert normalize_date_key(20240105) is None


class TestMonthHelpers:
    def test_month_bounds(self):
        assert month_bounds(2024, 2) == ("2024-02-01", "2024-03-01")

    def test_december_rolls_year(self):
        assert month_bounds(2024, 12) == ("2024-12-01", "2025-01-01")

    def test_month_day_label(self):
        assert month_day_label("2024-01-05") == "1/5"
        assert month_day_label("2024-12-31") == "12/31"

    def test_today_key_shape(self):
        assert re.match(r"^\d{4}-\d{2}-\d{2}$", today_key("UTC"))


class TestUserIdentity:
    def test_exactly_two(self):
        assert USERS == (UserIdentity.jiiji, UserIdentity.baaba)

    def test_labels_are_stored_values(self):
        assert UserIdentity.jiiji.label == "じぃじ"
        assert UserIdentity.baaba.label == "ばぁば"

    def test_parse_key_or_label(self):
        assert UserIdentity.parse("baaba") is UserIdentity.baaba
        assert UserIdentity.parse("じぃじ") is UserIdentity.jiiji

    def test_parse_unknown(self):
        assert UserIdentity.parse("grandson") is None
