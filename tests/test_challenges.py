"""Challenge bookkeeping, achievements, daily evaluation and shifting plans."""

import pytest

from prep.api_exceptions import ConflictError, ResourceNotFoundError, ValidationError
from prep.challenges import (
    CHALLENGES,
    CHALLENGES_BY_ID,
    SHIFTING_STRATEGIES,
    achievements,
    calculate_shifting_plan,
    challenge_stats,
    challenge_success_rate,
    evaluate_day,
    log_progress,
    start_challenge,
)
from prep.lifestyle import build_nutrition_entry
from prep.sleep import build_sleep_entry

ANCHOR = next(s for s in SHIFTING_STRATEGIES if s["name"] == "Anchor Sleep Method")


# ============================================================================
# CATALOG + BOOKKEEPING
# ============================================================================

def test_catalog_is_consistent():
    assert len(CHALLENGES) == len(CHALLENGES_BY_ID) == 21
    assert all(c["base_points"] > 0 and c["total_days"] >= 7 for c in CHALLENGES)


def test_start_creates_progress_record():
    data = start_challenge(None, "daily-duo", today="2026-03-01")
    progress = data["active_challenges"][0]
    assert progress["challenge_id"] == "daily-duo"
    assert progress["start_date"] == "2026-03-01"
    assert progress["current_day"] == 1
    assert progress["total_days"] == 7
    assert progress["daily_progress"] == {}
    assert data["total_points"] == 0


def test_start_twice_conflicts():
    data = start_challenge(None, "daily-duo")
    with pytest.raises(ConflictError):
        start_challenge(data, "daily-duo")


def test_unknown_challenge():
    with pytest.raises(ResourceNotFoundError):
        start_challenge(None, "not-a-challenge")


def test_start_does_not_mutate_input():
    original = start_challenge(None, "daily-duo")
    start_challenge(original, "hydration-habit")
    assert len(original["active_challenges"]) == 1


def test_log_progress_points_streaks_and_notes():
    data = start_challenge(None, "daily-duo")
    data, progress = log_progress(data, "daily-duo", True, "played twice")
    data, progress = log_progress(data, "daily-duo", True)
    assert progress["daily_progress"] == {"1": True, "2": True}
    assert progress["points"] == 20
    assert progress["completed_days"] == 2
    assert progress["notes"] == ["Day 1: played twice"]
    assert data["streaks"]["daily-duo"] == 2

    data, progress = log_progress(data, "daily-duo", False)
    assert data["streaks"]["daily-duo"] == 0
    assert progress["points"] == 20
    assert progress["current_day"] == 4


def test_log_progress_completes_after_last_day():
    data = start_challenge(None, "daily-duo")
    for day in range(7):
        data, progress = log_progress(data, "daily-duo", day != 3)
    assert data["active_challenges"] == []
    assert data["completed_challenges"][0]["is_active"] is False
    assert data["total_points"] == 60

    with pytest.raises(ResourceNotFoundError):
        log_progress(data, "daily-duo", True)


def test_success_rate_and_stats():
    data = start_challenge(None, "daily-duo")
    data = start_challenge(data, "hydration-habit")
    data, _ = log_progress(data, "daily-duo", True)
    data, _ = log_progress(data, "daily-duo", False)
    data, _ = log_progress(data, "hydration-habit", True)
    # (1/2 + 1/1) / 2
    assert challenge_success_rate(data) == pytest.approx(0.75)

    stats = challenge_stats(data)
    assert stats["active"] == 2
    assert stats["current_streak"] == 1
    assert stats["total_completed"] == 0
    assert challenge_success_rate(None) == 0.0


def test_achievements_unlock():
    assert not any(a["unlocked"] for a in achievements(None))

    data = {"active_challenges": [], "total_points": 520, "streaks": {"daily-duo": 7},
            "completed_challenges": [{"challenge_id": cid} for cid in
                                     ("daily-duo", "am-vs-pm-compare", "consistency-quest")]}
    unlocked = {a["id"] for a in achievements(data) if a["unlocked"]}
    assert unlocked == {"first-challenge", "point-master", "week-warrior", "category-expert"}


# ============================================================================
# DAILY EVALUATION
# ============================================================================

def _nutrition(meals=(), drinks=()):
    return build_nutrition_entry(
        "2026-03-01",
        [{"type": t, "time": clock, "description": ""} for t, clock in meals],
        [{"type": t, "amount": 250, "time": clock} for t, clock in drinks],
    )


def test_shift_milestone_within_tolerance():
    progress = {"current_day": 2, "target_value": {"milestones": [
        {"day": 1, "target_time": "23:00"}, {"day": 2, "target_time": "22:45"},
    ]}}
    sleep = build_sleep_entry("2026-03-01", "22:55", "07:00")
    result = evaluate_day("fifteen-minute-shift", progress, {"sleep": sleep})
    assert result == {"evaluated": True, "success": True, "reason": "10 min from target 22:45"}

    late = build_sleep_entry("2026-03-01", "23:30", "07:00")
    assert evaluate_day("fifteen-minute-shift", progress, {"sleep": late})["success"] is False


def test_wake_anchor_compares_across_midnight():
    progress = {"current_day": 1, "target_value": "00:05"}
    sleep = build_sleep_entry("2026-03-01", "16:00", "23:55")
    assert evaluate_day("wake-time-anchor", progress, {"sleep": sleep})["success"] is True


def test_shift_without_target_or_sleep_is_not_evaluated():
    assert evaluate_day("fifteen-minute-shift", {}, {})["evaluated"] is False
    sleep = build_sleep_entry("2026-03-01", "22:00", "07:00")
    assert evaluate_day("fifteen-minute-shift", {}, {"sleep": sleep})["evaluated"] is False


def test_screens_off_before_midnight_bedtime():
    sleep = build_sleep_entry("2026-03-01", "00:15", "08:00")
    ok   = evaluate_day("screens-off-30", {}, {"sleep": sleep, "check_in": {"screens_off_time": "23:40"}})
    late = evaluate_day("screens-off-30", {}, {"sleep": sleep, "check_in": {"screens_off_time": "00:00"}})
    assert ok["success"] is True
    assert late["success"] is False


def test_evening_dim_needs_check_in():
    sleep = build_sleep_entry("2026-03-01", "22:30", "07:00")
    assert evaluate_day("evening-dim-down", {}, {"sleep": sleep})["evaluated"] is False
    result = evaluate_day("evening-dim-down", {}, {"sleep": sleep, "check_in": {"dim_time": "21:30"}})
    assert result["success"] is True


def test_meal_windows():
    full = _nutrition(meals=[("Light", "07:30"), ("Medium", "12:30"), ("Heavy", "18:30")])
    assert evaluate_day("consistent-meal-windows", {}, {"nutrition": full})["success"] is True
    partial = _nutrition(meals=[("Light", "07:30"), ("Heavy", "18:30")])
    result = evaluate_day("consistent-meal-windows", {}, {"nutrition": partial})
    assert result["success"] is False
    assert result["reason"] == "Missing: lunch"


def test_early_dinner():
    sleep = build_sleep_entry("2026-03-01", "22:00", "07:00")
    early = _nutrition(meals=[("Heavy", "18:30")])
    late  = _nutrition(meals=[("Heavy", "20:00")])
    assert evaluate_day("early-dinner-window", {}, {"sleep": sleep, "nutrition": early})["success"] is True
    assert evaluate_day("early-dinner-window", {}, {"sleep": sleep, "nutrition": late})["success"] is False


def test_caffeine_cutoff():
    before = _nutrition(drinks=[("Coffee", "08:00"), ("Tea", "13:30")])
    after  = _nutrition(drinks=[("Coffee", "08:00"), ("Energy Drink", "16:00")])
    none   = _nutrition(drinks=[("Water", "17:00")])
    assert evaluate_day("smart-caffeine-window", {}, {"nutrition": before})["success"] is True
    assert evaluate_day("smart-caffeine-window", {}, {"nutrition": after})["success"] is False
    assert evaluate_day("smart-caffeine-window", {}, {"nutrition": none}) == {
        "evaluated": True, "success": True, "reason": "No caffeine",
    }


def test_caffeine_window_ignores_soda():
    soda = _nutrition(drinks=[("Coffee", "09:00"), ("Soda", "18:00")])
    assert soda["total_caffeine"] == 95 + 34
    assert evaluate_day("smart-caffeine-window", {}, {"nutrition": soda}) == {
        "evaluated": True, "success": True, "reason": "Last caffeine at 09:00",
    }


def test_game_based_challenges():
    morning = {"hour_of_day": 9.0, "avg_reaction_time": 400}
    evening = {"hour_of_day": 19.5, "avg_reaction_time": 420}
    assert evaluate_day("daily-duo", {}, {"sessions": [morning]})["success"] is False
    assert evaluate_day("daily-duo", {}, {"sessions": [morning, evening]})["success"] is True
    assert evaluate_day("am-vs-pm-compare", {}, {"sessions": [morning, morning]})["success"] is False
    assert evaluate_day("am-vs-pm-compare", {}, {"sessions": [morning, evening]})["success"] is True


def test_consistency_quest():
    steady  = [{"hour_of_day": 9, "avg_reaction_time": t} for t in (400, 410, 395, 405, 390)]
    erratic = [{"hour_of_day": 9, "avg_reaction_time": t} for t in (200, 600, 300, 700, 250)]
    assert evaluate_day("consistency-quest", {}, {"sessions": steady[:4]})["evaluated"] is False
    assert evaluate_day("consistency-quest", {}, {"sessions": steady})["success"] is True
    assert evaluate_day("consistency-quest", {}, {"sessions": erratic})["success"] is False


def test_self_report_challenges():
    result = evaluate_day("bedroom-reset", {}, {})
    assert result == {"evaluated": False, "success": None, "reason": "Challenge is tracked by self-report"}


# ============================================================================
# SHIFTING PLANS
# ============================================================================

def test_plan_advances_past_midnight():
    plan = calculate_shifting_plan("22:00", "00:00", ANCHOR)
    assert plan["total_shift_minutes"] == pytest.approx(120)
    assert plan["daily_shift_minutes"] == 15
    assert plan["estimated_days"] == 8
    assert plan["direction"] == "advance"
    assert plan["milestones"][0] == {"day": 1, "target_time": "22:15", "tolerance_window": 15}
    assert plan["milestones"][-1]["target_time"] == "00:00"


def test_plan_is_spread_over_a_week():
    gradual = SHIFTING_STRATEGIES[0]
    plan = calculate_shifting_plan("00:30", "21:00", gradual)
    assert plan["total_shift_minutes"] == pytest.approx(-210)
    assert plan["daily_shift_minutes"] == pytest.approx(30)
    assert plan["estimated_days"] == 7
    assert plan["direction"] == "delay"
    assert [m["target_time"] for m in plan["milestones"]][:2] == ["00:00", "23:30"]
    assert plan["milestones"][-1]["target_time"] == "21:00"


def test_plan_without_shift():
    plan = calculate_shifting_plan("22:00", "22:00", ANCHOR)
    assert plan["estimated_days"] == 0
    assert plan["milestones"] == []


def test_plan_rejects_zero_rate():
    with pytest.raises(ValidationError):
        calculate_shifting_plan("22:00", "21:00", {"name": "Stuck", "max_shift_per_day": 0})
