"""Nutrition / activity entries and the lifestyle factors fed to the feedback engine."""

import pytest

from prep.lifestyle import (
    build_activity_entry,
    build_nutrition_entry,
    caffeine_timing_score,
    exercise_intensity_score,
    last_caffeine_time,
    lifestyle_factors,
    to_epoch_ms,
)
from prep.sleep import build_sleep_entry


def test_epoch_ms_is_utc():
    assert to_epoch_ms("1970-01-02", "00:00") == 24 * 3600 * 1000
    assert to_epoch_ms("1970-01-01", "01:30") == 90 * 60 * 1000


def test_nutrition_entry_defaults_caffeine_per_drink():
    entry = build_nutrition_entry(
        "2026-03-01",
        [{"time": "07:15", "type": "Light", "description": "Oatmeal"}],
        [
            {"time": "07:30", "type": "Coffee", "amount": 240, "caffeine": None},
            {"time": "10:00", "type": "Water", "amount": 500},
            {"time": "15:00", "type": "Tea", "amount": 200, "caffeine": 0},
        ],
    )
    assert [d["caffeine"] for d in entry["hydration"]] == [95, 0, 0]
    assert entry["total_caffeine"] == 95
    assert entry["total_fluids"] == 940
    assert entry["meal_count"] == 1


def test_last_caffeine_and_timing_score():
    entry = build_nutrition_entry("2026-03-01", [], [
        {"time": "16:30", "type": "Soda", "amount": 330},
        {"time": "09:00", "type": "Coffee", "amount": 240},
        {"time": "18:00", "type": "Water", "amount": 300},
    ])
    assert last_caffeine_time(entry) == "16:30"
    assert caffeine_timing_score(entry) == pytest.approx(-2.5)


def test_caffeine_free_day_has_no_timing_score():
    entry = build_nutrition_entry("2026-03-01", [], [{"time": "09:00", "type": "Water", "amount": 300}])
    assert last_caffeine_time(entry) is None
    assert caffeine_timing_score(entry) is None


@pytest.mark.parametrize("kind,minutes,expected", [
    ("Light", 30, 1),
    ("Medium", 45, 3),
    ("Intense", 60, 6),
])
def test_exercise_intensity(kind, minutes, expected):
    entry = build_activity_entry("2026-03-01", "17:00", kind, "Run", minutes)
    assert exercise_intensity_score(entry) == pytest.approx(expected)


def test_factors_are_stamped_and_sorted():
    sleep = build_sleep_entry("2026-03-01", "23:00", "07:00")
    plain = build_nutrition_entry("2026-03-02", [{"time": "08:00", "type": "Light"}], [])
    coffee = build_nutrition_entry("2026-03-01", [], [{"time": "08:30", "type": "Coffee", "amount": 200}])
    run = build_activity_entry("2026-03-01", "18:00", "Medium", "Run", 30)

    factors = lifestyle_factors([sleep], [plain, coffee], [run])
    assert [(f["type"], f["timestamp"]) for f in factors] == [
        ("nutrition", to_epoch_ms("2026-03-01", "08:30")),
        ("activity",  to_epoch_ms("2026-03-01", "18:00")),
        ("sleep",     to_epoch_ms("2026-03-02", "07:00")),
        ("nutrition", to_epoch_ms("2026-03-02", "12:00")),
    ]
