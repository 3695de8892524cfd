"""
Prep — Cognitive sessions  (prep/cognitive.py)
==============================================
Maps finished games onto the five cognitive domains, reduces each game's
telemetry to one raw performance number, normalizes it against the
player's own history, and summarizes sessions per day and per hour.

Public API:
  GAME_DOMAIN_MAP, DOMAINS
  extract_raw_performance(game_type, data) -> float
  normalize_score(raw, history) -> float
  build_session(game_type, data, history, ...) -> dict
  daily_domain_scores(sessions, day) -> dict
  peak_performance(sessions) -> dict
  cognitive_profile(sessions, previous, peers) -> dict
"""
from __future__ import annotations

import statistics
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional

from prep.sleep import round_half_up


DOMAINS = ["memory", "attention", "recall", "problemSolving", "creativity"]

GAME_DOMAIN_MAP = {
    "colorQuick":     "attention",
    "reactionTime":   "attention",
    "racingReaction": "attention",
    "memorySequence": "memory",
    "memoryTest":     "memory",
    "numberSequence": "memory",
    "longTermMemory": "recall",
    "patternMemory":  "recall",
    "colorSort":      "problemSolving",
    "colorRunner":    "problemSolving",
    "survivalGame":   "creativity",
}


def domain_for(game_type: str) -> str:
    return GAME_DOMAIN_MAP.get(game_type, "attention")


def _num(data: dict, key: str) -> float:
    try:
        return float(data.get(key) or 0)
    except (TypeError, ValueError):
        return 0.0


def extract_raw_performance(game_type: str, data: dict) -> float:
    """Primary performance number for one game session (higher is better)."""
    accuracy = _num(data, "accuracy")
    reaction = _num(data, "avgReactionTime")
    score    = _num(data, "score")

    if game_type == "colorQuick":
        # speed × accuracy composite
        if accuracy and reaction:
            return (1000 / reaction) * (accuracy / 100)
        return score

    if game_type in ("reactionTime", "racingReaction"):
        return 1000 / reaction if reaction else 0.0

    if game_type in ("memorySequence", "memoryTest", "numberSequence"):
        return accuracy

    if game_type in ("longTermMemory", "patternMemory"):
        if accuracy:
            return accuracy
        rounds = _num(data, "totalRounds")
        return _num(data, "correctAnswers") / rounds * 100 if rounds else 0.0

    if game_type == "colorSort":
        duration = _num(data, "totalGameDuration")
        if accuracy and duration:
            return accuracy * 1000 / duration
        return accuracy

    if game_type == "survivalGame":
        return _num(data, "explorationScore") or score

    return score


def normalize_score(raw: float, history: list[float]) -> float:
    """Min–max position of `raw` among the player's previous raw scores for the game."""
    values = [*history, raw]
    lo, hi = min(values), max(values)
    if hi == lo:
        return 0.5
    return (raw - lo) / (hi - lo)


def hour_of_day(timestamp_ms: int) -> float:
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return dt.hour + dt.minute / 60


def build_session(game_type: str, data: dict, history: list[float],
                  normalized_score: Optional[float] = None,
                  timestamp_ms: Optional[int] = None) -> dict:
    """
    Row for the cognitive_sessions table.  A client-supplied normalized
    score in [0, 1] takes precedence over history normalization.
    """
    if timestamp_ms is None:
        timestamp_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
    raw = extract_raw_performance(game_type, data)
    if normalized_score is None or not 0 <= normalized_score <= 1:
        normalized_score = normalize_score(raw, history)

    return {
        "game_type":         game_type,
        "domain":            domain_for(game_type),
        "raw_score":         raw,
        "normalized_score":  normalized_score,
        "hour_of_day":       hour_of_day(timestamp_ms),
        "timestamp":         timestamp_ms,
        "accuracy":          data.get("accuracy"),
        "avg_reaction_time": data.get("avgReactionTime"),
        "total_rounds":      data.get("totalRounds"),
        "duration_ms":       data.get("totalGameDuration"),
        "details":           data,
    }


# ──────────────────────────────────────────────
# SUMMARIES
# ──────────────────────────────────────────────

def _session_date(session: dict) -> str:
    return datetime.fromtimestamp(session["timestamp"] / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


def daily_domain_scores(sessions: list[dict], day: str) -> dict:
    """Mean normalized score (0–100) per domain for sessions played on `day`."""
    today = [s for s in sessions if _session_date(s) == day]
    by_domain: dict[str, list[float]] = defaultdict(list)
    for s in today:
        by_domain[s["domain"]].append(s["normalized_score"])

    scores = {d: round_half_up(statistics.mean(by_domain[d]) * 100) if by_domain[d] else 0 for d in DOMAINS}
    played = {s["game_type"] for s in today}
    scores["date"]          = day
    scores["computed_from"] = {game: game in played for game in GAME_DOMAIN_MAP}
    return scores


def peak_performance(sessions: list[dict]) -> dict:
    """
    Best clock hour and weekday (0 = Sunday) by mean normalized score,
    median session length in minutes, and a fatigue threshold estimate.
    """
    if not sessions:
        return {
            "best_time_of_day":         10,
            "best_day_of_week":         2,
            "optimal_session_duration": 30,
            "fatigue_threshold":        5,
        }

    hourly: dict[int, list[float]] = defaultdict(list)
    daily:  dict[int, list[float]] = defaultdict(list)
    durations = []

    for s in sessions:
        score = s.get("normalized_score") or 0
        if score > 0:
            dt = datetime.fromtimestamp(s["timestamp"] / 1000, tz=timezone.utc)
            hourly[dt.hour].append(score)
            daily[(dt.weekday() + 1) % 7].append(score)
        if s.get("duration_ms"):
            durations.append(s["duration_ms"] / 60000)

    best_hour = max(hourly, key=lambda h: statistics.mean(hourly[h])) if hourly else 10
    best_day  = max(daily, key=lambda d: statistics.mean(daily[d])) if daily else 2
    durations.sort()
    optimal = durations[len(durations) // 2] if durations else 30

    return {
        "best_time_of_day":         best_hour,
        "best_day_of_week":         best_day,
        "optimal_session_duration": round_half_up(optimal),
        "fatigue_threshold":        min(10, max(3, len(sessions) // 5)),
    }


# ──────────────────────────────────────────────
# PROFILE
# ──────────────────────────────────────────────

DAY_MS = 24 * 3600 * 1000

PROFILE_WINDOWS_DAYS = {"average_7d": 7, "average_30d": 30}
TRAJECTORY_THRESHOLD = 5.0      # % weekly change
FULL_CONFIDENCE_SESSIONS = 10
FULL_RELIABILITY_SESSIONS = 50
STALE_AFTER_DAYS = 30


def _one_decimal(x: float) -> float:
    return round_half_up(x * 10) / 10


def _domain_score(sessions: list[dict]) -> tuple[int, list[dict]]:
    """Mean of per-game averages (0-100), plus each game's contribution."""
    by_game: dict[str, list[float]] = defaultdict(list)
    for s in sessions:
        by_game[s["game_type"]].append(s["normalized_score"] * 100)

    contributions = []
    for game, scores in sorted(by_game.items()):
        avg = statistics.mean(scores)
        cv  = statistics.pstdev(scores) / avg if avg else 0.0
        contributions.append({
            "game_type":     game,
            "session_count": len(scores),
            "avg_score":     round_half_up(avg),
            "reliability":   max(0.0, 100 - cv * 100) / 100,
        })
    if not by_game:
        return 0, contributions
    return round_half_up(statistics.mean(statistics.mean(v) for v in by_game.values())), contributions


def _confidence(scores: list[float]) -> float:
    sample = min(1.0, len(scores) / FULL_CONFIDENCE_SESSIONS)
    consistency = (100 - statistics.pstdev(scores)) / 100 if len(scores) > 1 else 0.5
    return max(0.0, min(1.0, sample * 0.6 + consistency * 0.4))


def domain_scores(sessions: list[dict], now_ms: int, previous: Optional[dict] = None) -> dict:
    """
    Current, 7-day and 30-day score per domain with confidence, the games
    behind the current score, and the personal best carried over from the
    previous profile.
    """
    prev_domains = (previous or {}).get("domains") or {}
    domains = {}
    for domain in DOMAINS:
        rows = [s for s in sessions if s.get("domain") == domain]
        current, contributions = _domain_score(rows)
        entry = {
            "current":       current,
            "confidence":    _confidence([s["normalized_score"] * 100 for s in rows]),
            "contributions": contributions,
        }
        for key, days in PROFILE_WINDOWS_DAYS.items():
            entry[key] = _domain_score([s for s in rows if now_ms - s["timestamp"] <= days * DAY_MS])[0]

        best = prev_domains.get(domain) or {}
        if best and current <= (best.get("personal_best") or 0):
            entry["personal_best"]      = best["personal_best"]
            entry["personal_best_date"] = best.get("personal_best_date", now_ms)
        else:
            entry["personal_best"]      = current
            entry["personal_best_date"] = now_ms
        domains[domain] = entry
    return domains


def domain_trends(domains: dict, previous: Optional[dict] = None) -> dict:
    """
    Weekly / monthly change against the previous profile's windows, with
    volatility across the current, 7-day and 30-day scores.  With no
    earlier profile (or an empty window) the change is 0.
    """
    prev_domains = (previous or {}).get("domains") or {}
    trends = {}
    for domain, d in domains.items():
        prev = prev_domains.get(domain) or {}
        prev7  = prev.get("average_7d") or d["average_7d"]
        prev30 = prev.get("average_30d") or d["average_30d"]

        weekly  = (d["average_7d"] - prev7) / max(prev7, 1) * 100
        monthly = (d["average_30d"] - prev30) / max(prev30, 1) * 100
        recent  = [s for s in (d["current"], d["average_7d"], d["average_30d"]) if s > 0]
        volatility = statistics.pstdev(recent) if recent else 0.0

        if weekly > TRAJECTORY_THRESHOLD:
            trajectory = "improving"
        elif weekly < -TRAJECTORY_THRESHOLD:
            trajectory = "declining"
        else:
            trajectory = "stable"

        trends[domain] = {
            "weekly_change":     _one_decimal(weekly),
            "monthly_change":    _one_decimal(monthly),
            "yearly_change":     _one_decimal(monthly * 12),
            "trajectory":        trajectory,
            "volatility":        _one_decimal(volatility),
            "consistency_score": round_half_up(max(0.0, 100 - volatility)),
            "momentum":          _one_decimal(weekly - monthly),
        }
    return trends


def domain_percentiles(domains: dict, peers: list[dict]) -> dict:
    """Share of stored profiles scoring below this one, per domain; 50 when nobody has a score."""
    percentiles = {}
    for domain, d in domains.items():
        scores = [((p.get("domains") or {}).get(domain) or {}).get("current") or 0 for p in peers]
        scores = [s for s in scores if s > 0]
        if not scores:
            percentiles[domain] = 50
            continue
        below = sum(1 for s in scores if s < d["current"])
        percentiles[domain] = round_half_up(below / len(scores) * 100)
    return percentiles


def data_quality(sessions: list[dict], domains: dict, now_ms: int) -> dict:
    """
    How far to trust the profile: sample size, days since the last game,
    domain coverage, mean confidence of the covered domains, and an overall
    reliability (0-100) averaging the four.
    """
    covered = [d for d in domains.values() if d["current"] > 0]
    timestamps = [s["timestamp"] for s in sessions if s.get("timestamp")]
    recency  = (now_ms - max(timestamps)) // DAY_MS if timestamps else 0
    coverage = len(covered) / len(domains) * 100
    confidence = statistics.mean(d["confidence"] for d in covered) if covered else 0.0

    factors = [
        min(1.0, len(sessions) / FULL_RELIABILITY_SESSIONS),
        max(0.0, 1 - recency / STALE_AFTER_DAYS),
        coverage / 100,
        confidence,
    ]
    return {
        "sample_size": len(sessions),
        "recency":     recency,
        "coverage":    round_half_up(coverage),
        "consistency": round_half_up(confidence * 100),
        "reliability": round_half_up(statistics.mean(factors) * 100),
    }


def cognitive_profile(sessions: list[dict], previous: Optional[dict] = None,
                      peers: Optional[list[dict]] = None, now_ms: Optional[int] = None) -> dict:
    """
    The MyBrain profile: domain scores, trends against the previous stored
    profile, percentiles among stored profiles, peak performance and data
    quality.
    """
    if now_ms is None:
        now_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
    domains = domain_scores(sessions, now_ms, previous)
    return {
        "domains":          domains,
        "trends":           domain_trends(domains, previous),
        "percentiles":      domain_percentiles(domains, peers or []),
        "peak_performance": peak_performance(sessions),
        "data_quality":     data_quality(sessions, domains, now_ms),
        "last_updated":     now_ms,
    }
