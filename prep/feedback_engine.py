"""
Prep — Lifestyle feedback engine  (prep/feedback_engine.py)
===========================================================
Correlates lifestyle factors (sleep, nutrition, activity, challenges)
with cognitive game outcomes and turns the strongest relationships into
personalized recommendations.

A factor is paired with every outcome whose timestamp falls within 12 h
of (factor time + lag).  A correlation is only reported once there are at
least 7 such pairs.

Detected relationships:
  - Sleep quality        → overall performance       (same day)
  - Sleep duration       → each cognitive domain     (same day)
  - Sleep consistency    → overall performance       (bedtime deviation)
  - Caffeine timing      → attention                 (2 h lag)
  - Meal timing          → overall performance       (meal-time regularity)
  - Exercise intensity   → next-day performance      (12 h lag)
  - Time of day          → overall performance
  - Each challenge       → performance during vs the week before it

Public API:
  analyze_feedback(factors, outcomes, challenge_data, now_ms) -> FeedbackAnalysis
  outcomes_from_sessions(sessions) -> list[dict]
"""
from __future__ import annotations

import math
import statistics
from collections import defaultdict
from dataclasses import dataclass, field, asdict
from datetime import date, timedelta
from typing import Callable, Optional

from prep.cognitive import DOMAINS
from prep.lifestyle import caffeine_timing_score, exercise_intensity_score, now_ms as _now_ms, to_epoch_ms
from prep.sleep import parse_clock, sleep_duration


MIN_SAMPLE_SIZE      = 7
CONFIDENCE_THRESHOLD = 0.3
PAIR_WINDOW_MS       = 12 * 3600 * 1000
RECENT_WINDOW_MS     = 7 * 24 * 3600 * 1000
HOUR_MS              = 3600 * 1000


# ──────────────────────────────────────────────
# DATA STRUCTURES
# ──────────────────────────────────────────────

@dataclass
class CorrelationInsight:
    factor:      str
    outcome:     str
    correlation: float
    confidence:  float
    sample_size: int
    timelag:     int                 # hours between factor and outcome
    significance: str                # "high" | "medium" | "low"
    trend:       str                 # "improving" | "stable" | "declining"
    details:     dict = field(default_factory=dict)


@dataclass
class Recommendation:
    id:                   str
    category:             str        # "sleep" | "nutrition" | "activity"
    priority:             str
    title:                str
    description:          str
    expected_improvement: dict
    timeframe:            str
    evidence:             dict
    suggested_challenge:  Optional[str] = None


@dataclass
class FeedbackAnalysis:
    insights:         list[CorrelationInsight] = field(default_factory=list)
    recommendations:  list[Recommendation] = field(default_factory=list)
    progress_summary: dict = field(default_factory=dict)
    confidence_level: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class _Correlation:
    correlation:        float = 0.0
    confidence:         float = 0.0
    sample_size:        int = 0
    recent_correlation: float = 0.0


# ──────────────────────────────────────────────
# STATISTICS
# ──────────────────────────────────────────────

def pearson(xs: list[float], ys: list[float]) -> float:
    """Pearson r; 0.0 for empty, mismatched or constant input."""
    if len(xs) != len(ys) or not xs:
        return 0.0
    n      = len(xs)
    sum_x  = sum(xs)
    sum_y  = sum(ys)
    sum_xy = sum(x * y for x, y in zip(xs, ys))
    sum_xx = sum(x * x for x in xs)
    sum_yy = sum(y * y for y in ys)
    num    = n * sum_xy - sum_x * sum_y
    den_sq = (n * sum_xx - sum_x ** 2) * (n * sum_yy - sum_y ** 2)
    if den_sq <= 0:
        return 0.0
    return num / math.sqrt(den_sq)


def significance(correlation: float) -> str:
    strength = abs(correlation)
    if strength > 0.6:
        return "high"
    if strength > 0.3:
        return "medium"
    return "low"


def correlation_trend(recent: float, overall: float) -> str:
    diff = recent - overall
    if abs(diff) < 0.1:
        return "stable"
    return "improving" if diff > 0 else "declining"


def correlate(factors: list[dict], outcomes: list[dict],
              factor_value: Callable[[dict], Optional[float]],
              outcome_value: Callable[[dict], float],
              lag_hours: float, now_ms: int) -> _Correlation:
    pairs = []
    for f in factors:
        x = factor_value(f)
        if x is None:
            continue
        target = f["timestamp"] + lag_hours * HOUR_MS
        for o in outcomes:
            if abs(o["timestamp"] - target) < PAIR_WINDOW_MS:
                pairs.append((x, outcome_value(o), o["timestamp"]))

    if len(pairs) < MIN_SAMPLE_SIZE:
        return _Correlation(sample_size=len(pairs))

    r = pearson([p[0] for p in pairs], [p[1] for p in pairs])
    recent = [p for p in pairs if p[2] > now_ms - RECENT_WINDOW_MS]
    recent_r = pearson([p[0] for p in recent], [p[1] for p in recent]) if len(recent) >= 5 else r

    return _Correlation(
        correlation        = r,
        confidence         = min(0.95, len(pairs) / 30),
        sample_size        = len(pairs),
        recent_correlation = recent_r,
    )


def _insight(factor: str, outcome: str, corr: _Correlation, lag: int, **details) -> CorrelationInsight:
    return CorrelationInsight(
        factor       = factor,
        outcome      = outcome,
        correlation  = corr.correlation,
        confidence   = corr.confidence,
        sample_size  = corr.sample_size,
        timelag      = lag,
        significance = significance(corr.correlation),
        trend        = correlation_trend(corr.recent_correlation, corr.correlation),
        details      = details,
    )


def _score(o: dict) -> float:
    return o["score"]


# ──────────────────────────────────────────────
# FACTOR EXTRACTORS
# ──────────────────────────────────────────────

def _sleep_quality(f: dict) -> Optional[float]:
    return f["value"].get("sleep_quality_score")


def _sleep_minutes(f: dict) -> float:
    v = f["value"]
    if v.get("duration_minutes"):
        return v["duration_minutes"]
    return sleep_duration(v["date"], v["bed_time"], v["wake_time"])["total_minutes"]


def _bed_clock(entry: dict) -> float:
    # after-midnight bed times sort after the evening ones
    clock = parse_clock(entry["bed_time"])
    return clock + 24 if clock < 12 else clock


def _meal_hours(entry: dict) -> dict[str, float]:
    """Earliest clock time per meal type on one day."""
    hours: dict[str, float] = {}
    for meal in entry.get("meals") or []:
        h = parse_clock(meal["time"])
        hours[meal["type"]] = min(h, hours.get(meal["type"], h))
    return hours


# ──────────────────────────────────────────────
# ANALYSES
# ──────────────────────────────────────────────

def _sleep_insights(factors, outcomes, now_ms) -> list[CorrelationInsight]:
    sleep = [f for f in factors if f["type"] == "sleep"]
    insights = []

    corr = correlate(sleep, outcomes, _sleep_quality, _score, 0, now_ms)
    if corr.sample_size >= MIN_SAMPLE_SIZE:
        insights.append(_insight("Sleep Quality", "Overall Cognitive Performance", corr, 0))

    for domain in DOMAINS:
        scoped = [o for o in outcomes if o["domain"] == domain]
        corr = correlate(sleep, scoped, _sleep_minutes, _score, 0, now_ms)
        if corr.sample_size >= MIN_SAMPLE_SIZE:
            insights.append(_insight("Sleep Duration", f"{domain} Performance", corr, 0))

    if len(sleep) >= 2:
        mean_bed = statistics.mean(_bed_clock(f["value"]) for f in sleep)
        corr = correlate(sleep, outcomes, lambda f: -abs(_bed_clock(f["value"]) - mean_bed), _score, 0, now_ms)
        if corr.sample_size >= MIN_SAMPLE_SIZE:
            insights.append(_insight("Sleep Consistency", "Overall Cognitive Performance", corr, 0,
                                     mean_bedtime=round(mean_bed % 24, 2)))
    return insights


def _nutrition_insights(factors, outcomes, now_ms) -> list[CorrelationInsight]:
    nutrition = [f for f in factors if f["type"] == "nutrition"]
    insights = []

    attention = [o for o in outcomes if o["domain"] == "attention"]
    corr = correlate(nutrition, attention, lambda f: caffeine_timing_score(f["value"]), _score, 2, now_ms)
    if corr.sample_size >= MIN_SAMPLE_SIZE:
        insights.append(_insight("Caffeine Timing", "Attention Performance", corr, 2))

    # regularity: distance of each meal from that meal type's usual time
    by_type: dict[str, list[float]] = defaultdict(list)
    for f in nutrition:
        for meal_type, h in _meal_hours(f["value"]).items():
            by_type[meal_type].append(h)
    usual = {t: statistics.mean(hs) for t, hs in by_type.items()}

    def regularity(f: dict) -> Optional[float]:
        hours = _meal_hours(f["value"])
        if not hours:
            return None
        return -statistics.mean(abs(h - usual[t]) for t, h in hours.items())

    corr = correlate(nutrition, outcomes, regularity, _score, 0, now_ms)
    if corr.sample_size >= MIN_SAMPLE_SIZE:
        insights.append(_insight("Meal Timing", "Overall Cognitive Performance", corr, 0))
    return insights


def _activity_insights(factors, outcomes, now_ms) -> list[CorrelationInsight]:
    activity = [f for f in factors if f["type"] == "activity"]
    corr = correlate(activity, outcomes, lambda f: exercise_intensity_score(f["value"]), _score, 12, now_ms)
    if corr.sample_size >= MIN_SAMPLE_SIZE:
        return [_insight("Exercise Intensity", "Next-Day Cognitive Performance", corr, 12)]
    return []


def _challenge_insights(challenge_data: Optional[dict], outcomes) -> list[CorrelationInsight]:
    """Scores while a challenge ran (indicator 1) vs the week before it (indicator 0)."""
    if not challenge_data:
        return []
    challenges = (challenge_data.get("active_challenges") or []) + (challenge_data.get("completed_challenges") or [])
    insights = []
    for ch in challenges:
        if not ch.get("start_date"):
            continue
        start = to_epoch_ms(ch["start_date"], "00:00")
        end_day = date.fromisoformat(ch["start_date"]) + timedelta(days=ch.get("total_days") or 7)
        end = to_epoch_ms(end_day.isoformat(), "00:00")
        before = [o["score"] for o in outcomes if start - 7 * 24 * HOUR_MS <= o["timestamp"] < start]
        during = [o["score"] for o in outcomes if start <= o["timestamp"] < end]
        n = len(before) + len(during)
        if len(before) < 3 or len(during) < 3 or n < MIN_SAMPLE_SIZE:
            continue
        r = pearson([0.0] * len(before) + [1.0] * len(during), before + during)
        corr = _Correlation(correlation=r, confidence=min(0.95, n / 30), sample_size=n, recent_correlation=r)
        insights.append(_insight(
            f"{ch['challenge_id']} challenge", "Overall Cognitive Performance", corr, 0,
            before_avg=round(statistics.mean(before), 1),
            during_avg=round(statistics.mean(during), 1),
        ))
    return insights


def _time_of_day_insight(outcomes, now_ms) -> list[CorrelationInsight]:
    timed = [o for o in outcomes if o.get("time_of_day") is not None]
    if len(timed) < MIN_SAMPLE_SIZE:
        return []
    xs = [o["time_of_day"] for o in timed]
    ys = [o["score"] for o in timed]
    r = pearson(xs, ys)
    recent = [o for o in timed if o["timestamp"] > now_ms - RECENT_WINDOW_MS]
    recent_r = pearson([o["time_of_day"] for o in recent], [o["score"] for o in recent]) if len(recent) >= 5 else r
    corr = _Correlation(correlation=r, confidence=min(0.95, len(timed) / 30),
                        sample_size=len(timed), recent_correlation=recent_r)

    morning = [o["score"] for o in timed if o["time_of_day"] < 12]
    evening = [o["score"] for o in timed if o["time_of_day"] >= 17]
    return [_insight(
        "Time of Day", "Overall Cognitive Performance", corr, 0,
        morning_avg=round(statistics.mean(morning), 1) if morning else None,
        evening_avg=round(statistics.mean(evening), 1) if evening else None,
    )]


# ──────────────────────────────────────────────
# RECOMMENDATIONS
# ──────────────────────────────────────────────

def _suggested_sleep_challenge(insight: CorrelationInsight) -> str:
    if "Quality" in insight.factor:
        return "evening-dim-down"
    if "Duration" in insight.factor:
        return "consistent-pre-sleep-routine"
    if "Consistency" in insight.factor:
        return "wake-time-anchor"
    return "fifteen-minute-shift"


def _suggested_nutrition_challenge(insight: CorrelationInsight) -> str:
    if "Caffeine" in insight.factor:
        return "smart-caffeine-window"
    if "Meal" in insight.factor:
        return "consistent-meal-windows"
    return "study-snack-swap"


def _evidence(insight: CorrelationInsight) -> dict:
    return {"correlation": insight.correlation, "based_on_days": insight.sample_size, "user_specific": True}


def _recommendation(insight: CorrelationInsight, priority: str, index: int) -> Optional[Recommendation]:
    if "Sleep" in insight.factor and insight.correlation > 0.4:
        return Recommendation(
            id=f"sleep-{index}", category="sleep", priority=priority,
            title="Optimize Your Sleep Pattern",
            description=(f"Your {insight.factor.lower()} strongly correlates with "
                         f"{insight.outcome.lower()}. Focus on maintaining consistent sleep habits."),
            expected_improvement={"domain": insight.outcome,
                                  "percentage_increase": round(insight.correlation * 15),
                                  "confidence": insight.confidence},
            suggested_challenge=_suggested_sleep_challenge(insight),
            timeframe="1-2 weeks",
            evidence=_evidence(insight),
        )

    if "Caffeine" in insight.factor or "Meal" in insight.factor:
        direction = "positive" if insight.correlation > 0 else "negative"
        return Recommendation(
            id=f"nutrition-{index}", category="nutrition", priority=priority,
            title="Adjust Your Nutrition Timing",
            description=(f"Your {insight.factor.lower()} shows a {direction} relationship "
                         f"with {insight.outcome.lower()}."),
            expected_improvement={"domain": insight.outcome,
                                  "percentage_increase": round(abs(insight.correlation) * 12),
                                  "confidence": insight.confidence},
            suggested_challenge=_suggested_nutrition_challenge(insight),
            timeframe="1 week",
            evidence=_evidence(insight),
        )

    if "Exercise" in insight.factor:
        return Recommendation(
            id=f"activity-{index}", category="activity", priority=priority,
            title="Optimize Exercise Timing",
            description=(f"Regular exercise appears to boost your {insight.outcome.lower()} "
                         f"by {round(abs(insight.correlation) * 100)}%."),
            expected_improvement={"domain": insight.outcome,
                                  "percentage_increase": round(abs(insight.correlation) * 10),
                                  "confidence": insight.confidence},
            timeframe="2-3 weeks",
            evidence=_evidence(insight),
        )

    return None


def generate_recommendations(insights: list[CorrelationInsight]) -> list[Recommendation]:
    significant = sorted(
        (i for i in insights if abs(i.correlation) > CONFIDENCE_THRESHOLD and i.significance != "low"),
        key=lambda i: abs(i.correlation),
        reverse=True,
    )
    recs = []
    for index, insight in enumerate(significant):
        rec = _recommendation(insight, "high" if index < 3 else "medium", index + 1)
        if rec:
            recs.append(rec)
    return recs


def progress_summary(insights: list[CorrelationInsight], outcomes: list[dict]) -> dict:
    ordered = sorted(outcomes, key=lambda o: o["timestamp"])
    recent, previous = ordered[-7:], ordered[-14:-7]
    trend = "stable"
    if recent and previous:
        change = statistics.mean(o["score"] for o in recent) - statistics.mean(o["score"] for o in previous)
        if change > 5:
            trend = "improving"
        elif change < -5:
            trend = "declining"

    helpful = sorted((i for i in insights if i.correlation > CONFIDENCE_THRESHOLD),
                     key=lambda i: i.correlation, reverse=True)
    harmful = sorted((i for i in insights if i.correlation < -CONFIDENCE_THRESHOLD),
                     key=lambda i: i.correlation)
    return {
        "overall_trend":           trend,
        "best_performing_factors": [i.factor for i in helpful[:3]],
        "areas_for_improvement":   [i.factor for i in harmful[:3]],
    }


# ──────────────────────────────────────────────
# ENTRY POINTS
# ──────────────────────────────────────────────

def outcomes_from_sessions(sessions: list[dict]) -> list[dict]:
    """Cognitive sessions as outcomes scored 0–100."""
    return [
        {
            "timestamp":   s["timestamp"],
            "domain":      s["domain"],
            "score":       s["normalized_score"] * 100,
            "time_of_day": s.get("hour_of_day"),
        }
        for s in sessions
    ]


def analyze_feedback(factors: list[dict], outcomes: list[dict],
                     challenge_data: Optional[dict] = None,
                     now_ms: Optional[int] = None) -> FeedbackAnalysis:
    if now_ms is None:
        now_ms = _now_ms()

    insights = (
        _sleep_insights(factors, outcomes, now_ms)
        + _nutrition_insights(factors, outcomes, now_ms)
        + _activity_insights(factors, outcomes, now_ms)
        + _challenge_insights(challenge_data, outcomes)
        + _time_of_day_insight(outcomes, now_ms)
    )

    return FeedbackAnalysis(
        insights         = insights,
        recommendations  = generate_recommendations(insights),
        progress_summary = progress_summary(insights, outcomes),
        confidence_level = statistics.mean(i.confidence for i in insights) if insights else 0.0,
    )
