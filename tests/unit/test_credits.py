"""Tests for cu_common.credits and cu_common.datetime_utils."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.cu_common.credits import (
    credits_to_display,
    credits_to_float,
    is_below_floor,
    parse_credits,
    round_credits,
)
from src.cu_common.datetime_utils import add_days, ensure_utc, to_iso


class TestParseCredits:
    def test_numbers(self) -> None:
        assert parse_credits(4) == Decimal("4.00")
        assert parse_credits(4.5) == Decimal("4.50")

    def test_comma_decimal(self) -> None:
        assert parse_credits("4,50") == Decimal("4.50")

    def test_rounds_half_up(self) -> None:
        assert parse_credits("0.005") == Decimal("0.01")
        assert round_credits(Decimal("2.345")) == Decimal("2.35")

    @pytest.mark.parametrize("value", [None, True, "", "abc", "NaN", float("inf")])
    def test_rejects(self, value: object) -> None:
        with pytest.raises(ValueError):
            parse_credits(value)


class TestFloor:
    def test_tolerance(self) -> None:
        assert not is_below_floor(Decimal("-0.004"))
        assert is_below_floor(Decimal("-0.01"))


class TestDisplay:
    def test_float_and_display(self) -> None:
        assert credits_to_float(Decimal("6")) == 6.0
        assert credits_to_float(None) is None
        assert credits_to_display(Decimal("1234.5")) == "1,234.50 credits"


class TestDatetimeUtils:
    def test_expiry_seven_days(self) -> None:
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert add_days(start, 7) == datetime(2024, 1, 8, tzinfo=timezone.utc)

    def test_no_validity_never_expires(self) -> None:
        assert add_days(datetime(2024, 1, 1, tzinfo=timezone.utc), None) is None

    def test_ensure_utc_variants(self) -> None:
        naive = datetime(2024, 1, 1, 12, 0)
        assert ensure_utc(naive) == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert ensure_utc(date(2024, 1, 8)) == datetime(2024, 1, 8, tzinfo=timezone.utc)
        assert ensure_utc("2024-01-01T00:00:00Z") == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert ensure_utc("") is None
        cet = timezone(timedelta(hours=1))
        assert ensure_utc(datetime(2024, 1, 1, 1, 0, tzinfo=cet)) == datetime(
            2024, 1, 1, tzinfo=timezone.utc
        )

    def test_to_iso_uses_z(self) -> None:
        assert to_iso(datetime(2024, 1, 8, tzinfo=timezone.utc)) == "2024-01-08T00:00:00Z"
        assert to_iso(None) is None
