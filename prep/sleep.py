"""
Prep — Sleep  (prep/sleep.py)
=============================
Turns raw bed/wake clock times into the derived values stored with every
sleep entry, and summarizes a run of entries for the sync-score model.

Public API:
  sleep_duration(date, bed_time, wake_time) -> dict
  sleep_quality_score(hours, waking_events) -> int
  quality_band(score) -> "good" | "fair" | "poor"
  build_sleep_entry(date, bed_time, wake_time, waking_events) -> dict
  sleep_metrics(entries) -> SleepMetrics
"""
from __future__ import annotations

import math
import statistics
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta


TARGET_SLEEP_HOURS = 7.5
DURATION_WEIGHT    = 0.7
CONTINUITY_WEIGHT  = 0.3
EVENT_PENALTY      = 0.10


def round_half_up(value: float) -> int:
    """2.5 → 3, -2.5 → -2 (no banker's rounding)."""
    return math.floor(value + 0.5)


def parse_clock(value: str) -> float:
    """'22:45' → 22.75"""
    hours, minutes = value.split(":")
    return int(hours) + int(minutes) / 60


def sleep_duration(date: str, bed_time: str, wake_time: str) -> dict:
    """
    Bed time is taken on `date`; a wake time at or before the bed time is
    read as the following morning.
    """
    bed  = datetime.strptime(f"{date} {bed_time}", "%Y-%m-%d %H:%M")
    wake = datetime.strptime(f"{date} {wake_time}", "%Y-%m-%d %H:%M")
    if wake <= bed:
        wake += timedelta(days=1)
    total_minutes = int((wake - bed).total_seconds() // 60)
    return {
        "hours":         total_minutes // 60,
        "minutes":       total_minutes % 60,
        "total_minutes": total_minutes,
    }


def sleep_quality_score(hours: float, waking_events: int) -> int:
    duration_part   = min(hours / TARGET_SLEEP_HOURS, 1.0)
    continuity_part = max(0.0, min(1.0, 1 - EVENT_PENALTY * waking_events))
    return round_half_up(100 * (DURATION_WEIGHT * duration_part + CONTINUITY_WEIGHT * continuity_part))


def quality_band(score: float) -> str:
    if score >= 85:
        return "good"
    if score >= 70:
        return "fair"
    return "poor"


def build_sleep_entry(date: str, bed_time: str, wake_time: str, waking_events: int = 0) -> dict:
    """Row ready for the sleep_entries table (without user_id)."""
    duration = sleep_duration(date, bed_time, wake_time)
    score    = sleep_quality_score(duration["total_minutes"] / 60, waking_events)
    return {
        "date":                date,
        "bed_time":            bed_time,
        "wake_time":           wake_time,
        "waking_events":       waking_events,
        "duration_minutes":    duration["total_minutes"],
        "sleep_quality_score": score,
        "quality_band":        quality_band(score),
    }


# ──────────────────────────────────────────────
# SUMMARY
# ──────────────────────────────────────────────

@dataclass
class SleepMetrics:
    average_quality: float = 0.0
    consistency:     float = 0.0   # 0–100, higher = steadier bed/wake clock times
    duration:        float = 0.0   # mean hours

    def to_dict(self) -> dict:
        return asdict(self)


def _clock_span(entry: dict) -> float:
    span = parse_clock(entry["wake_time"]) - parse_clock(entry["bed_time"])
    return span + 24 if span < 0 else span


def _fallback_quality(entry: dict) -> float:
    duration_score   = min(_clock_span(entry) / 8, 1) * 70
    continuity_score = max(0, 30 - (entry.get("waking_events") or 0) * 5)
    return min(100, duration_score + continuity_score)


def sleep_metrics(entries: list[dict]) -> SleepMetrics:
    if not entries:
        return SleepMetrics()

    qualities = [e.get("sleep_quality_score") or _fallback_quality(e) for e in entries]
    bed_times  = [parse_clock(e["bed_time"]) for e in entries]
    wake_times = [parse_clock(e["wake_time"]) for e in entries]

    variance    = statistics.pvariance(bed_times) + statistics.pvariance(wake_times)
    consistency = max(0.0, 100 - variance * 10)

    return SleepMetrics(
        average_quality = statistics.mean(qualities),
        consistency     = consistency,
        duration        = statistics.mean(_clock_span(e) for e in entries),
    )
