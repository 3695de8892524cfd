"""Sleep duration, quality score and run summaries."""

import pytest

from prep.sleep import (
    build_sleep_entry,
    quality_band,
    round_half_up,
    sleep_duration,
    sleep_metrics,
    sleep_quality_score,
)


def test_round_half_up_matches_away_from_bankers_rounding():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(-2.5) == -2
    assert round_half_up(79.4) == 79


def test_duration_rolls_wake_time_past_midnight():
    d = sleep_duration("2026-03-01", "22:45", "06:30")
    assert d == {"hours": 7, "minutes": 45, "total_minutes": 465}


def test_duration_same_clock_time_is_a_full_day():
    assert sleep_duration("2026-03-01", "07:00", "07:00")["total_minutes"] == 24 * 60


def test_duration_afternoon_nap_stays_same_day():
    assert sleep_duration("2026-03-01", "13:00", "14:30")["total_minutes"] == 90


@pytest.mark.parametrize("hours,events,expected", [
    (7.5, 0, 100),
    (9.0, 0, 100),      # duration part caps at 1
    (6.0, 2, 80),       # 0.7·0.8 + 0.3·0.8
    (3.75, 0, 65),      # 0.7·0.5 + 0.3
    (7.5, 10, 70),      # continuity floors at 0
    (7.5, 15, 70),
])
def test_quality_score(hours, events, expected):
    assert sleep_quality_score(hours, events) == expected


def test_quality_band_thresholds():
    assert quality_band(85) == "good"
    assert quality_band(84) == "fair"
    assert quality_band(70) == "fair"
    assert quality_band(69) == "poor"


def test_build_sleep_entry_derives_fields():
    entry = build_sleep_entry("2026-03-01", "22:30", "06:30", 0)
    assert entry["duration_minutes"] == 480
    assert entry["sleep_quality_score"] == 100
    assert entry["quality_band"] == "good"
    assert entry["date"] == "2026-03-01"


def test_metrics_empty_is_zeros():
    m = sleep_metrics([])
    assert (m.average_quality, m.consistency, m.duration) == (0.0, 0.0, 0.0)


def test_metrics_identical_nights_are_fully_consistent():
    entries = [build_sleep_entry(f"2026-03-0{i}", "22:00", "06:00") for i in range(1, 6)]
    m = sleep_metrics(entries)
    assert m.consistency == pytest.approx(100)
    assert m.duration == pytest.approx(8)
    assert m.average_quality == pytest.approx(100)


def test_metrics_fallback_quality_without_stored_score():
    m = sleep_metrics([{"bed_time": "22:00", "wake_time": "06:00", "waking_events": 2}])
    # min(8/8, 1)·70 + (30 − 2·5)
    assert m.average_quality == pytest.approx(90)


def test_metrics_irregular_nights_lose_consistency():
    entries = [
        {"bed_time": "21:00", "wake_time": "05:00", "sleep_quality_score": 80},
        {"bed_time": "23:00", "wake_time": "07:00", "sleep_quality_score": 60},
    ]
    m = sleep_metrics(entries)
    # var(bed) = 1, var(wake) = 1
    assert m.consistency == pytest.approx(80)
    assert m.average_quality == pytest.approx(70)
