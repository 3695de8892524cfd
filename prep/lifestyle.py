"""
Prep — Nutrition & activity logs  (prep/lifestyle.py)
=====================================================
Derived fields for nutrition and activity entries, the two lifestyle
scores the feedback engine correlates (caffeine timing, exercise
intensity), and the conversion of stored entries into timestamped
lifestyle factors.

Clock times carry no zone; they are read as UTC so that they line up with
the epoch-millisecond timestamps on cognitive sessions.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from prep.sleep import parse_clock, sleep_duration


DEFAULT_CAFFEINE_MG = {
    "Water":        0,
    "Coffee":       95,
    "Tea":          47,
    "Energy Drink": 80,
    "Soda":         34,
}

INTENSITY_WEIGHT = {"Light": 1, "Medium": 2, "Intense": 3}

CAFFEINE_CUTOFF_HOUR = 14.0


def to_epoch_ms(date: str, clock: str = "12:00") -> int:
    dt = datetime.strptime(f"{date} {clock}", "%Y-%m-%d %H:%M").replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


# ──────────────────────────────────────────────
# ENTRY BUILDERS
# ──────────────────────────────────────────────

def build_nutrition_entry(date: str, meals: list[dict], hydration: list[dict]) -> dict:
    drinks = []
    for item in hydration:
        drink = dict(item)
        if drink.get("caffeine") is None:
            drink["caffeine"] = DEFAULT_CAFFEINE_MG.get(drink["type"], 0)
        drinks.append(drink)

    return {
        "date":           date,
        "meals":          [dict(m) for m in meals],
        "hydration":      drinks,
        "total_caffeine": sum(d["caffeine"] for d in drinks),
        "total_fluids":   sum(d["amount"] for d in drinks),
        "meal_count":     len(meals),
        "timestamp":      datetime.now(timezone.utc).isoformat(),
    }


def build_activity_entry(date: str, time: str, type: str, activity: str, duration: int) -> dict:
    return {
        "date":      date,
        "time":      time,
        "type":      type,
        "activity":  activity,
        "duration":  duration,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ──────────────────────────────────────────────
# SCORES
# ──────────────────────────────────────────────

def last_caffeine_time(entry: dict, drink_types: Optional[tuple] = None) -> Optional[str]:
    """Clock time of the day's latest caffeinated drink, optionally only among `drink_types`."""
    if drink_types is None:
        times = [d["time"] for d in entry.get("hydration") or [] if (d.get("caffeine") or 0) > 0]
    else:
        times = [d["time"] for d in entry.get("hydration") or [] if d.get("type") in drink_types]
    return max(times, key=parse_clock) if times else None


def caffeine_timing_score(entry: dict) -> Optional[float]:
    """
    Hours between the day's last caffeinated drink and 14:00.
    Positive when the cut-off was respected; None on caffeine-free days.
    """
    last = last_caffeine_time(entry)
    if last is None:
        return None
    return CAFFEINE_CUTOFF_HOUR - parse_clock(last)


def exercise_intensity_score(entry: dict) -> float:
    return INTENSITY_WEIGHT.get(entry.get("type"), 1) * (entry.get("duration") or 0) / 30


# ──────────────────────────────────────────────
# FACTORS FOR THE FEEDBACK ENGINE
# ──────────────────────────────────────────────

def lifestyle_factors(sleep_entries: list[dict], nutrition_entries: list[dict],
                      activity_entries: list[dict]) -> list[dict]:
    """
    Flatten stored entries into {"type", "timestamp", "value"} records.
    Sleep is stamped at wake-up, nutrition at the last caffeinated drink
    (midday when there was none), activity at its start time.
    """
    factors = []
    for e in sleep_entries:
        minutes = sleep_duration(e["date"], e["bed_time"], e["wake_time"])["total_minutes"]
        woke_at = to_epoch_ms(e["date"], e["bed_time"]) + minutes * 60_000
        factors.append({"type": "sleep", "timestamp": woke_at, "value": e})
    for e in nutrition_entries:
        clock = last_caffeine_time(e) or "12:00"
        factors.append({"type": "nutrition", "timestamp": to_epoch_ms(e["date"], clock), "value": e})
    for e in activity_entries:
        factors.append({"type": "activity", "timestamp": to_epoch_ms(e["date"], e["time"]), "value": e})
    return sorted(factors, key=lambda f: f["timestamp"])
