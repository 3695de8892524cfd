"""
Prep — Challenges  (prep/challenges.py)
=======================================
Catalog of the habit challenges, per-user progress bookkeeping (start,
daily log, completion, points, streaks), achievements, automatic daily
evaluation from logged data, and circadian shifting plans.

Progress for one user is a single document:

  {
    "active_challenges":    [progress, ...],
    "completed_challenges": [progress, ...],
    "total_points":         int,
    "streaks":              {challenge_id: consecutive successful days},
  }
"""
from __future__ import annotations

import math
import statistics
from copy import deepcopy
from datetime import datetime, timezone, timedelta
from typing import Optional

from prep.api_exceptions import ConflictError, ResourceNotFoundError, ValidationError
from prep.lifestyle import last_caffeine_time, CAFFEINE_CUTOFF_HOUR
from prep.sleep import parse_clock


# ──────────────────────────────────────────────
# CATALOG
# ──────────────────────────────────────────────

CATEGORIES = ["shifting", "sleep-hygiene", "cognitive", "diet-caffeine"]


def _c(id, title, goal, category, duration, base_points, total_days=7):
    return {
        "id":          id,
        "title":       title,
        "goal":        goal,
        "category":    category,
        "duration":    duration,
        "base_points": base_points,
        "total_days":  total_days,
    }


CHALLENGES = [
    _c("fifteen-minute-shift", "15-Minute Shift Week", "Nudge bedtime/wake time toward school schedule", "shifting", "7 days", 50),
    _c("wake-time-anchor", "Wake-Time Anchor Streak", "Lock a consistent wake time", "shifting", "10 days", 80, 10),
    _c("weekend-drift-guard", "Weekend Drift Guard", 'Reduce "social jetlag"', "shifting", "3 weekends", 60, 21),
    _c("see-the-light", "See the Light!", "Strengthen circadian signal", "shifting", "7–14 days", 5, 14),

    _c("evening-dim-down", "Evening Dim-Down 60", "Lower pre-sleep arousal", "sleep-hygiene", "7 days", 10),
    _c("bedroom-reset", "Bedroom Reset", "Optimize room (dark/cool/quiet)", "sleep-hygiene", "7 days", 60),
    _c("screens-off-30", "Screens-Off 30", "Protect last 30 min before sleep", "sleep-hygiene", "7–14 days", 10),
    _c("soundscape-snooze", "Soundscape Snooze", "Build a wind-down ritual", "sleep-hygiene", "10 nights", 8),
    _c("late-night-snack-smart", "Late-Night Snack Smart", "Avoid heavy meals before bed", "sleep-hygiene", "7 days", 7),
    _c("consistent-pre-sleep-routine", "Consistent Pre-Sleep Routine", "Cue the brain for sleep", "sleep-hygiene", "14 days", 8),

    _c("daily-duo", "Daily Duo", "Regular measurement", "cognitive", "14 days", 10),
    _c("am-vs-pm-compare", "AM vs PM Compare", "Discover personal best times", "cognitive", "10 days", 12),
    _c("consistency-quest", "Consistency Quest", "Improve stability (not just speed)", "cognitive", "10 sessions", 15),
    _c("memory-ladder", "Memory Ladder", "Level up memory task difficulty", "cognitive", "Until target level reached", 10),
    _c("attention-uptick", "Attention Uptick", "Gradual improvement", "cognitive", "14 days", 50),
    _c("streak-safe", "Streak-Safe", "Healthy routine, no pressure", "cognitive", "Open-ended", 5),

    _c("consistent-meal-windows", "Consistent Meal Windows", "Regularity that supports energy", "diet-caffeine", "10 days", 6, 10),
    _c("early-dinner-window", "Early Dinner Window", "Leave a buffer before sleep", "diet-caffeine", "7 days", 8),
    _c("smart-caffeine-window", "Smart Caffeine Window", "Protect sleep and reduce jitters", "diet-caffeine", "10 days", 6, 10),
    _c("study-snack-swap", "Study Snack Swap", "Smoother energy during study", "diet-caffeine", "7 days", 5),
    _c("hydration-habit", "Hydration Habit", "Simple hydration rhythm", "diet-caffeine", "10 days", 2, 10),
]

CHALLENGES_BY_ID = {c["id"]: c for c in CHALLENGES}


def get_challenge(challenge_id: str) -> dict:
    challenge = CHALLENGES_BY_ID.get(challenge_id)
    if challenge is None:
        raise ResourceNotFoundError("Challenge", challenge_id)
    return challenge


def empty_challenge_data() -> dict:
    return {"active_challenges": [], "completed_challenges": [], "total_points": 0, "streaks": {}}


def _normalized(data: Optional[dict]) -> dict:
    out = empty_challenge_data()
    for key in out:
        if data and data.get(key) is not None:
            out[key] = deepcopy(data[key])
    return out


# ──────────────────────────────────────────────
# BOOKKEEPING
# ──────────────────────────────────────────────

def start_challenge(data: Optional[dict], challenge_id: str, target_value=None,
                    today: Optional[str] = None) -> dict:
    """Return updated challenge data with a fresh progress record."""
    challenge = get_challenge(challenge_id)
    data = _normalized(data)
    if any(p["challenge_id"] == challenge_id for p in data["active_challenges"]):
        raise ConflictError("Challenge is already active", "CHALLENGE_ACTIVE", {"challenge_id": challenge_id})

    progress = {
        "challenge_id":   challenge_id,
        "start_date":     today or datetime.now(timezone.utc).strftime("%Y-%m-%d"),
        "is_active":      True,
        "current_day":    1,
        "total_days":     challenge["total_days"],
        "daily_progress": {},
        "points":         0,
        "completed_days": 0,
        "notes":          [],
    }
    if target_value is not None:
        progress["target_value"] = target_value
    data["active_challenges"].append(progress)
    return data


def log_progress(data: Optional[dict], challenge_id: str, success: bool,
                 notes: Optional[str] = None) -> tuple[dict, dict]:
    """
    Record today's outcome for an active challenge and advance its day.
    Returns (updated data, the progress record).  Past the last day the
    record moves to completed and its points join the user's total.
    """
    data = _normalized(data)
    progress = next((p for p in data["active_challenges"] if p["challenge_id"] == challenge_id), None)
    if progress is None:
        raise ResourceNotFoundError("Active challenge", challenge_id, "CHALLENGE_NOT_ACTIVE")
    base_points = CHALLENGES_BY_ID.get(challenge_id, {}).get("base_points", 0)

    day = progress["current_day"]
    progress["daily_progress"][str(day)] = success
    if success:
        progress["completed_days"] += 1
        progress["points"] += base_points
        data["streaks"][challenge_id] = data["streaks"].get(challenge_id, 0) + 1
    else:
        data["streaks"][challenge_id] = 0

    if notes:
        progress.setdefault("notes", []).append(f"Day {day}: {notes}")

    progress["current_day"] += 1
    if progress["current_day"] > progress["total_days"]:
        progress["is_active"] = False
        data["active_challenges"] = [p for p in data["active_challenges"] if p["challenge_id"] != challenge_id]
        data["completed_challenges"].append(progress)
        data["total_points"] += progress["points"]

    return data, progress


def challenge_success_rate(data: Optional[dict]) -> float:
    """Mean share of logged days that succeeded, across active challenges."""
    active = (data or {}).get("active_challenges") or []
    if not active:
        return 0.0
    rates = []
    for p in active:
        logged = p.get("daily_progress") or {}
        rates.append(sum(1 for ok in logged.values() if ok) / len(logged) if logged else 0.0)
    return sum(rates) / max(len(active), 1)


def challenge_stats(data: Optional[dict]) -> dict:
    data = _normalized(data)
    by_category = {c: 0 for c in CATEGORIES}
    for p in data["completed_challenges"]:
        category = CHALLENGES_BY_ID.get(p["challenge_id"], {}).get("category")
        if category:
            by_category[category] += 1
    streaks = [v for v in data["streaks"].values() if isinstance(v, int)]
    return {
        "total_completed":      len(data["completed_challenges"]),
        "total_points":         data["total_points"],
        "current_streak":       max(streaks) if streaks else 0,
        "active":               len(data["active_challenges"]),
        "categories_completed": by_category,
    }


ACHIEVEMENTS = [
    ("first-challenge", "First Steps", "Complete your first challenge",
     lambda s: s["total_completed"] >= 1),
    ("point-master", "Point Master", "Earn 500 points",
     lambda s: s["total_points"] >= 500),
    ("week-warrior", "Week Warrior", "Maintain a 7-day streak",
     lambda s: s["current_streak"] >= 7),
    ("category-expert", "Category Expert", "Complete 3 challenges in one category",
     lambda s: any(n >= 3 for n in s["categories_completed"].values())),
    ("challenger", "The Challenger", "Complete 10 total challenges",
     lambda s: s["total_completed"] >= 10),
]


def achievements(data: Optional[dict]) -> list[dict]:
    stats = challenge_stats(data)
    return [
        {"id": aid, "title": title, "description": desc, "unlocked": bool(rule(stats))}
        for aid, title, desc, rule in ACHIEVEMENTS
    ]


# ──────────────────────────────────────────────
# AUTO TRACKING
# ──────────────────────────────────────────────

CAFFEINE_WINDOW_DRINKS = ("Coffee", "Tea", "Energy Drink")   # soda does not break the window
MILESTONE_TOLERANCE = 15   # minutes
MEAL_WINDOWS = {           # slot → [start, end) clock hours
    "breakfast": (4, 11),
    "lunch":     (11, 16),
    "dinner":    (16, 24),
}


def _minutes_apart(a: str, b: str) -> float:
    diff = abs(parse_clock(a) - parse_clock(b)) * 60
    return min(diff, 1440 - diff)


def _minutes_before(earlier: str, later: str) -> float:
    """Minutes from `earlier` to `later`, crossing midnight when needed."""
    diff = (parse_clock(later) - parse_clock(earlier)) * 60
    return diff + 1440 if diff < -720 else diff


def _meal_slots(nutrition: Optional[dict]) -> dict[str, str]:
    """Latest meal time in each slot."""
    slots: dict[str, str] = {}
    for meal in (nutrition or {}).get("meals") or []:
        hour = parse_clock(meal["time"])
        for slot, (lo, hi) in MEAL_WINDOWS.items():
            if lo <= hour < hi and (slot not in slots or hour > parse_clock(slots[slot])):
                slots[slot] = meal["time"]
    return slots


def _target_time(progress: dict) -> Optional[str]:
    """Clock target for today: the day's milestone if a plan was stored, else the fixed target."""
    target = progress.get("target_value")
    if isinstance(target, dict):
        day = progress.get("current_day", 1)
        for m in target.get("milestones") or []:
            if m.get("day") == day:
                return m.get("target_time")
        return target.get("target_time")
    return target if isinstance(target, str) else None


def _result(evaluated: bool, success: Optional[bool], reason: str) -> dict:
    return {"evaluated": evaluated, "success": success, "reason": reason}


def evaluate_day(challenge_id: str, progress: dict, day: dict) -> dict:
    """
    Decide from one day's records whether the challenge goal was met.

    `day` holds: "sleep" (entry or None), "nutrition" (entry or None),
    "sessions" (cognitive sessions that day), "check_in" (free-form clock
    times such as screens_off_time / dim_time).
    """
    get_challenge(challenge_id)
    sleep     = day.get("sleep")
    nutrition = day.get("nutrition")
    sessions  = day.get("sessions") or []
    check_in  = day.get("check_in") or {}

    if challenge_id in ("fifteen-minute-shift", "weekend-drift-guard", "wake-time-anchor"):
        if not sleep:
            return _result(False, None, "No sleep entry for this day")
        target = _target_time(progress)
        if not target:
            return _result(False, None, "Challenge has no target time")
        actual = sleep["wake_time"] if challenge_id == "wake-time-anchor" else sleep["bed_time"]
        off_by = _minutes_apart(actual, target)
        return _result(True, off_by <= MILESTONE_TOLERANCE, f"{off_by:.0f} min from target {target}")

    if challenge_id in ("screens-off-30", "evening-dim-down"):
        key, needed = ("screens_off_time", 30) if challenge_id == "screens-off-30" else ("dim_time", 60)
        if not sleep or not check_in.get(key):
            return _result(False, None, f"Needs a sleep entry and {key}")
        lead = _minutes_before(check_in[key], sleep["bed_time"])
        return _result(True, lead >= needed, f"{lead:.0f} min before bed")

    if challenge_id == "consistent-meal-windows":
        if not nutrition:
            return _result(False, None, "No nutrition entry for this day")
        missing = [slot for slot in MEAL_WINDOWS if slot not in _meal_slots(nutrition)]
        return _result(True, not missing, "All meals logged" if not missing else f"Missing: {', '.join(missing)}")

    if challenge_id == "early-dinner-window":
        dinner = _meal_slots(nutrition).get("dinner")
        if not sleep or not dinner:
            return _result(False, None, "Needs a dinner and a sleep entry")
        gap = _minutes_before(dinner, sleep["bed_time"]) / 60
        return _result(True, gap >= 3, f"Dinner {gap:.1f} h before bed")

    if challenge_id == "smart-caffeine-window":
        if not nutrition:
            return _result(False, None, "No nutrition entry for this day")
        last = last_caffeine_time(nutrition, CAFFEINE_WINDOW_DRINKS)
        if last is None:
            return _result(True, True, "No caffeine")
        return _result(True, parse_clock(last) <= CAFFEINE_CUTOFF_HOUR, f"Last caffeine at {last}")

    if challenge_id == "daily-duo":
        return _result(True, len(sessions) >= 2, f"{len(sessions)} game session(s)")

    if challenge_id == "am-vs-pm-compare":
        am = any(s["hour_of_day"] < 12 for s in sessions)
        pm = any(s["hour_of_day"] >= 12 for s in sessions)
        return _result(True, am and pm, f"AM: {am}, PM: {pm}")

    if challenge_id == "consistency-quest":
        times = [s["avg_reaction_time"] for s in sessions if s.get("avg_reaction_time")]
        if len(times) < 5:
            return _result(False, None, "Needs at least 5 timed sessions")
        mean = statistics.mean(times)
        sd   = statistics.pstdev(times)
        return _result(True, sd < 0.15 * mean, f"Reaction-time spread {sd / mean * 100:.0f}%")

    return _result(False, None, "Challenge is tracked by self-report")


# ──────────────────────────────────────────────
# SHIFTING PLANS
# ──────────────────────────────────────────────

SHIFTING_STRATEGIES = [
    {"name": "Gradual Advance (Early Bird)", "description": "Shift bedtime earlier by 15-30 minutes per day",
     "max_shift_per_day": 30, "rest_days_required": False, "light_exposure_recommended": True},
    {"name": "Gradual Delay (Night Owl)", "description": "Shift bedtime later by 15-30 minutes per day",
     "max_shift_per_day": 30, "rest_days_required": False, "light_exposure_recommended": True},
    {"name": "Anchor Sleep Method", "description": "Keep wake time consistent while adjusting bedtime",
     "max_shift_per_day": 15, "rest_days_required": False, "light_exposure_recommended": True},
    {"name": "Core Sleep Plus Nap", "description": "Maintain core sleep window with strategic naps",
     "max_shift_per_day": 45, "rest_days_required": True, "light_exposure_recommended": True},
    {"name": "Light Exposure Protocol", "description": "Use bright light to shift circadian rhythm",
     "max_shift_per_day": 20, "rest_days_required": False, "light_exposure_recommended": True},
    {"name": "Fasting Window Adjustment", "description": "Align meal times with target sleep schedule",
     "max_shift_per_day": 25, "rest_days_required": False, "light_exposure_recommended": True},
    {"name": "Weekend Reset Method", "description": "Make larger shifts on weekends, maintain during week",
     "max_shift_per_day": 60, "rest_days_required": True, "light_exposure_recommended": True},
]


def calculate_shifting_plan(current_time: str, target_time: str, strategy: dict) -> dict:
    """
    Daily steps from `current_time` to `target_time` (HH:MM), spread over at
    least a week and never faster than the strategy allows.
    """
    if strategy.get("max_shift_per_day", 0) <= 0:
        raise ValidationError("Strategy must allow a positive daily shift", field="strategy", error_code="INVALID_STRATEGY")

    total = (parse_clock(target_time) - parse_clock(current_time)) * 60
    if total < -720:
        total += 1440
    if total > 720:
        total -= 1440

    daily = min(abs(total) / 7, strategy["max_shift_per_day"])
    days  = math.ceil(abs(total) / daily) if daily else 0

    milestones = []
    start = datetime(2024, 1, 1) + timedelta(hours=parse_clock(current_time))
    step  = daily if total > 0 else -daily
    for i in range(1, days + 1):
        milestones.append({
            "day":              i,
            "target_time":      (start + timedelta(minutes=step * i)).strftime("%H:%M"),
            "tolerance_window": MILESTONE_TOLERANCE,
        })

    return {
        "total_shift_minutes": total,
        "daily_shift_minutes": daily,
        "estimated_days":      days,
        "direction":           "advance" if total > 0 else "delay",
        "strategy":            strategy,
        "milestones":          milestones,
    }
