"""Tests for payload timestamp encoding."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from cronspine.core.timestamps import format_timestamp, parse_timestamp, parse_zone, zone_name


class TestZoneName:
    def test_zoneinfo_key(self):
        assert zone_name(ZoneInfo("Europe/Prague")) == "Europe/Prague"

    def test_utc(self):
        assert zone_name(UTC) == "UTC"

    def test_fixed_offsets(self):
        assert zone_name(timezone(timedelta(hours=5, minutes=30))) == "+05:30"
        assert zone_name(timezone(timedelta(hours=-3))) == "-03:00"

    @pytest.mark.parametrize("name", ["UTC", "+05:30", "-03:00", "America/New_York"])
    def test_parse_zone_inverts_name(self, name):
        assert zone_name(parse_zone(name)) == name


class TestFormatTimestamp:
    def test_format(self):
        moment = datetime(2024, 1, 1, 12, 0, 0, 250000, tzinfo=UTC)
        assert format_timestamp(moment) == "1704110400.250000 UTC"

    def test_zone_is_kept(self):
        moment = datetime(2024, 1, 1, 13, 0, tzinfo=ZoneInfo("Europe/Prague"))
        assert format_timestamp(moment) == "1704110400.000000 Europe/Prague"

    def test_pre_epoch(self):
        """Seconds are floored so microseconds stay non-negative."""
        moment = datetime(1969, 12, 31, 23, 59, 59, 500000, tzinfo=UTC)
        assert format_timestamp(moment) == "-1.500000 UTC"

    def test_naive_rejected(self):
        with pytest.raises(ValueError):
            format_timestamp(datetime(2024, 1, 1))


class TestParseTimestamp:
    @pytest.mark.parametrize(
        "moment",
        [
            datetime(2024, 1, 1, 12, 0, 0, 1, tzinfo=UTC),
            datetime(2024, 7, 1, 8, 30, 15, 999999, tzinfo=ZoneInfo("Europe/Prague")),
            datetime(1969, 12, 31, 23, 59, 59, 500000, tzinfo=UTC),
            datetime(2024, 3, 1, tzinfo=timezone(timedelta(hours=-7))),
        ],
    )
    def test_exact_round_trip(self, moment):
        """Instant, microseconds and zone all survive."""
        parsed = parse_timestamp(format_timestamp(moment))
        assert parsed == moment
        assert parsed.utcoffset() == moment.utcoffset()
        assert parsed.microsecond == moment.microsecond

    @pytest.mark.parametrize("text", ["", "1704110400", "abc.def UTC", "1704110400.0"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_timestamp(text)
