"""
Prep — Sync Score model  (prep/sync_score.py)
=============================================
Scores how well a student's school and study windows line up with the
hours they are most ready to learn, blending a survey-predicted circadian
curve with what their own game sessions show.

Pipeline:
  1. Learning acrophase φ from the quiz (natural wake + focus/test
     offsets, nudged by wake feel and weekend bedtime).
  2. Readiness L(t) = I·(0.8·½(1 + cos ω(t − φ)) + 0.2·exp(−(t − 17)²/8)),
     zeroed during the first hour after the school-day wake time.
  3. Predicted alignment = mean readiness over the school window (0.7)
     and the homework window (0.3).
  4. Per-domain cosinor fits on the game sessions give a reliability ρ
     that shifts weight from predicted to observed alignment.
  5. Social-jetlag penalty on the natural vs school midsleep gap.
  6. With enough lifestyle data, feedback-engine insights add bonuses.

Public API:
  calculate_enhanced_sync_score(responses, cognitive, sleep, lifestyle, challenge_data) -> SyncResult
  calculate_simple_sync_score(responses, cognitive, sleep) -> SyncResult
  fit_cosinor(sessions, domain) -> CosinorFit
  learning_readiness(t, phi, wake_time) -> float | ndarray
"""
from __future__ import annotations

import math
import statistics
from dataclasses import dataclass, field, asdict
from typing import Optional

import numpy as np

from prep.challenges import challenge_success_rate
from prep.cognitive import DOMAINS
from prep.feedback_engine import FeedbackAnalysis, analyze_feedback, outcomes_from_sessions
from prep.sleep import SleepMetrics, round_half_up, sleep_metrics


OMEGA                = 2 * math.pi / 24
RHO_MAX              = 0.8
N0                   = 20      # sessions at which reliability reaches half of R²
MIN_COSINOR_SESSIONS = 5
SCHOOL_WEIGHT        = 0.7
STUDY_WEIGHT         = 0.3
AFTERNOON_BOOST      = 0.2
JETLAG_K             = 0.03
TIMELINE_BINS        = 96
MIN_FEEDBACK_SESSIONS = 10


# ──────────────────────────────────────────────
# QUIZ LOOKUPS
# ──────────────────────────────────────────────

_NATURAL_WAKE = {"Before 8 AM": 7, "8–10 AM": 9, "After 10 AM": 11}
_FOCUS_OFFSET = {"Morning": 2, "Afternoon": 7, "Evening": 9}
_TEST_OFFSET  = {"Morning": 2, "Midday": 5, "Evening": 9}
_SCHOOL_START = {"Before 7:30 AM": 7.25, "7:30–8:00 AM": 7.75, "After 8:00 AM": 8.5}
_WAKE_SCHOOL  = {"Before 6 AM": 5.5, "6–6:59 AM": 6.5, "7–7:59 AM": 7.5, "8 AM or later": 8.5}
SCHOOL_DAY_HOURS = 6.5


def natural_wake_hour(responses: dict) -> float:
    return _NATURAL_WAKE.get(responses.get("natural_wake"), 9)


def school_wake_hour(responses: dict) -> Optional[float]:
    """None when the student did not answer; readiness is then never gated."""
    answer = responses.get("wake_school")
    if not answer:
        return None
    return _WAKE_SCHOOL.get(answer, 7.5)


def school_window(responses: dict) -> tuple[float, float]:
    """(start hour, duration hours)"""
    return _SCHOOL_START.get(responses.get("school_start"), 7.75), SCHOOL_DAY_HOURS


def homework_window(responses: dict, school_end: float) -> tuple[float, float]:
    answer = responses.get("homework_time")
    if answer == "After dinner":
        return 19.0, 1.5
    if answer == "Late at night":
        return 21.0, 1.5
    if answer == "Depends":
        return school_end + 0.5, 1.0
    return school_end + 0.5, 1.5


def learning_acrophase(responses: dict) -> float:
    """Clock hour of peak learning readiness, in [0, 24)."""
    phi = (natural_wake_hour(responses)
           + 0.6 * _FOCUS_OFFSET.get(responses.get("focus_time"), 5)
           + 0.4 * _TEST_OFFSET.get(responses.get("test_time"), 5)) % 24

    feel = responses.get("wake_feel")
    if feel == "Super groggy":
        phi += 1
    elif feel == "Wide awake":
        phi -= 0.5

    weekend = responses.get("bed_weekend")
    if weekend == "After Midnight":
        phi += 1
    elif weekend == "Before 10 PM":
        phi -= 1

    return (phi + 24) % 24


# ──────────────────────────────────────────────
# READINESS CURVE
# ──────────────────────────────────────────────

def learning_readiness(t, phi: float, wake_time: Optional[float] = None):
    """Readiness in [0, 1] at clock hour(s) `t`; accepts a scalar or an array."""
    t = np.asarray(t, dtype=float)
    circadian = 0.5 * (1 + np.cos(OMEGA * (t - phi)))
    boost     = np.exp(-((t - 17) ** 2) / 8)
    level     = (1 - AFTERNOON_BOOST) * circadian + AFTERNOON_BOOST * boost
    if wake_time is not None:
        level = np.where((t >= wake_time) & (t < wake_time + 1), 0.0, level)
    level = np.clip(level, 0.0, 1.0)
    return float(level) if level.ndim == 0 else level


def mean_readiness(start: float, duration: float, phi: float,
                   wake_time: Optional[float] = None, samples: int = 60) -> float:
    t = (start + np.arange(samples) * duration / samples) % 24
    return float(np.mean(learning_readiness(t, phi, wake_time)))


# ──────────────────────────────────────────────
# COSINOR FIT
# ──────────────────────────────────────────────

@dataclass
class CosinorFit:
    amplitude:   float = 0.0
    acrophase:   float = 12.0
    reliability: float = 0.0
    r_squared:   float = 0.0


def fit_cosinor(sessions: list[dict], domain: str) -> CosinorFit:
    """
    Least-squares fit of y = M + a·cos ωt + b·sin ωt to one domain's
    normalized scores against hour of day.  Fewer than five sessions, or
    hours that cannot separate the cosine from the sine term, give the
    flat default.  Sessions bunched into a few daytime hours leave the
    cos/sin terms off-centre, so their R² goes negative and the fit
    earns no reliability.
    """
    rows = [s for s in sessions if s.get("domain") == domain]
    n = len(rows)
    if n < MIN_COSINOR_SESSIONS:
        return CosinorFit()

    t = np.array([s["hour_of_day"] for s in rows], dtype=float)
    y = np.array([s["normalized_score"] for s in rows], dtype=float)
    X = np.column_stack([np.ones(n), np.cos(OMEGA * t), np.sin(OMEGA * t)])

    coef, _, rank, _ = np.linalg.lstsq(X, y, rcond=None)
    if rank < 3:
        return CosinorFit()

    # R² scores the rhythm around the sample mean, not the fitted intercept
    _, a, b = coef
    predicted = y.mean() + a * X[:, 1] + b * X[:, 2]
    ss_res = float(np.sum((y - predicted) ** 2))
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    r_squared = 1 - ss_res / ss_tot if ss_tot > 0 else 0.0

    return CosinorFit(
        amplitude   = float(math.hypot(a, b)),
        acrophase   = (math.atan2(b, a) * 24 / (2 * math.pi) + 24) % 24,
        reliability = min(RHO_MAX, n / (n + N0) * max(0.0, r_squared)),
        r_squared   = r_squared,
    )


def _sigmoid(x: float) -> float:
    return 1 / (1 + math.exp(-x))


def observed_alignment(sessions: list[dict], window: tuple[float, float]) -> float:
    """Sigmoid of the mean normalized score of sessions played inside the window."""
    start, duration = window
    inside = [s["normalized_score"] for s in sessions
              if start <= s["hour_of_day"] <= start + duration]
    return _sigmoid(statistics.mean(inside) if inside else 0.0)


def social_jetlag_penalty(responses: dict) -> float:
    natural = natural_wake_hour(responses)
    school  = school_wake_hour(responses)
    if school is None:
        school = natural

    delta = abs((school - 8 + 24) % 24 - (natural - 8 + 24) % 24)
    if delta > 12:
        delta = 24 - delta
    return math.exp(-JETLAG_K * delta * delta)


def chronotype_for_phase(phi: float) -> dict:
    if phi < 10:
        animal, off = "Lion", abs(phi - 8) * 5
    elif phi < 14:
        animal, off = "Bear", abs(phi - 12) * 4
    elif phi < 18:
        animal, off = "Wolf", abs(phi - 16) * 5
    else:
        animal, off = "Dolphin", min(abs(phi - 20), abs(phi - 6)) * 6
    return {"chronotype": animal, "out_of_sync": round_half_up(max(0.0, min(100.0, off)))}


def learning_timeline(phi: float, fits: list[CosinorFit], wake_time: Optional[float]) -> list[float]:
    """Readiness every 15 minutes over the day, blended with the fitted curves."""
    hours = np.arange(TIMELINE_BINS) * 0.25
    theoretical = learning_readiness(hours, phi, wake_time)

    rho = sum(f.reliability for f in fits) / len(DOMAINS)
    weighted = [f for f in fits if f.reliability > 0]
    if rho < 0.1 or not weighted:
        return theoretical.tolist()

    total = sum(f.reliability for f in weighted)
    observed = sum(
        f.reliability * 0.5 * (1 + f.amplitude * np.cos(OMEGA * (hours - f.acrophase)))
        for f in weighted
    ) / total
    return ((1 - rho) * theoretical + rho * observed).tolist()


# ──────────────────────────────────────────────
# FEEDBACK-DRIVEN ADJUSTMENTS
# ──────────────────────────────────────────────

def dynamic_adjustments(feedback: Optional[FeedbackAnalysis], metrics: SleepMetrics,
                        challenge_data: Optional[dict]) -> dict:
    adjustments = {
        "sleep_quality_bonus":      0,
        "nutrition_timing_bonus":   0,
        "exercise_bonus":           0,
        "challenge_progress_bonus": 0,
        "consistency_bonus":        0,
    }
    insights = feedback.insights if feedback else []

    sleep = next((i for i in insights if "Sleep" in i.factor and i.correlation > 0.3), None)
    if sleep:
        adjustments["sleep_quality_bonus"] = round_half_up(sleep.correlation * 10)

    nutrition = next((i for i in insights if "Caffeine" in i.factor or "Meal" in i.factor), None)
    if nutrition:
        bonus = round_half_up(abs(nutrition.correlation) * 8)
        adjustments["nutrition_timing_bonus"] = -bonus if nutrition.correlation < 0 else bonus

    exercise = next((i for i in insights if "Exercise" in i.factor or "Activity" in i.factor), None)
    if exercise and exercise.correlation > 0:
        adjustments["exercise_bonus"] = round_half_up(exercise.correlation * 6)

    if challenge_data and challenge_data.get("active_challenges"):
        adjustments["challenge_progress_bonus"] = round_half_up(challenge_success_rate(challenge_data) * 8)

    if metrics.consistency > 80:
        adjustments["consistency_bonus"] = round_half_up((metrics.consistency - 80) * 0.2)

    return adjustments


def trend_analysis(sessions: list[dict], feedback: Optional[FeedbackAnalysis]) -> dict:
    if len(sessions) < 7:
        return {"weekly_trend": "stable", "key_factors": [], "projected_score": 50}

    ordered  = sorted(sessions, key=lambda s: s["timestamp"])
    recent   = statistics.mean(s["normalized_score"] for s in ordered[-7:])
    previous = ordered[-14:-7]
    previous_avg = statistics.mean(s["normalized_score"] for s in previous) if previous else recent

    if recent > previous_avg + 0.05:
        trend, direction = "improving", 1
    elif recent < previous_avg - 0.05:
        trend, direction = "declining", -1
    else:
        trend, direction = "stable", 0

    key_factors = [i.factor for i in (feedback.insights if feedback else []) if abs(i.correlation) > 0.4][:3]
    projected   = round_half_up(recent * 100 + direction * 5)
    return {
        "weekly_trend":    trend,
        "key_factors":     key_factors,
        "projected_score": max(0, min(100, projected)),
    }


# ──────────────────────────────────────────────
# RESULT
# ──────────────────────────────────────────────

@dataclass
class SyncResult:
    sync_score:            int
    school_alignment:      int
    study_alignment:       int
    learning_phase:        float
    social_jetlag_penalty: int
    adaptive_components:   dict
    sleep_metrics:         dict
    learning_timeline:     list[float]
    chronotype:            dict
    dynamic_adjustments:   dict
    trend_analysis:        dict
    lifestyle_feedback:    Optional[dict] = None
    integrated:            bool = False
    data_points:           int = 0
    sleep_entries:         int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class _Base:
    phi:        float
    wake_time:  Optional[float]
    school:     float
    study:      float
    observed:   dict
    fits:       dict
    rho:        float
    jetlag:     float
    metrics:    SleepMetrics
    score:      int
    sleep_bonus: float = field(default=0.0)


def _base(responses: dict, cognitive: list[dict], sleep: list[dict]) -> _Base:
    phi       = learning_acrophase(responses)
    wake_time = school_wake_hour(responses)

    school_win = school_window(responses)
    study_win  = homework_window(responses, school_win[0] + school_win[1])
    school = mean_readiness(*school_win, phi, wake_time)
    study  = mean_readiness(*study_win, phi, wake_time)

    fits = {d: fit_cosinor(cognitive, d) for d in DOMAINS}
    rho  = sum(f.reliability for f in fits.values()) / len(DOMAINS)
    observed = {
        "school": observed_alignment(cognitive, school_win),
        "study":  observed_alignment(cognitive, study_win),
    }

    metrics = sleep_metrics(sleep)
    jetlag  = social_jetlag_penalty(responses)
    if metrics.consistency > 0:
        jetlag *= 0.8 + 0.2 * metrics.consistency / 100

    predicted = SCHOOL_WEIGHT * school + STUDY_WEIGHT * study
    seen      = SCHOOL_WEIGHT * observed["school"] + STUDY_WEIGHT * observed["study"]
    score     = round_half_up(100 * jetlag * ((1 - rho) * predicted + rho * seen))

    return _Base(
        phi         = phi,
        wake_time   = wake_time,
        school      = school,
        study       = study,
        observed    = observed,
        fits        = fits,
        rho         = rho,
        jetlag      = jetlag,
        metrics     = metrics,
        score       = score,
        sleep_bonus = (metrics.average_quality - 70) * 0.1 if metrics.average_quality > 0 else 0.0,
    )


def _result(base: _Base, score: int, adjustments: dict, trend: dict,
            feedback: Optional[FeedbackAnalysis], cognitive: list[dict], sleep: list[dict]) -> SyncResult:
    return SyncResult(
        sync_score            = max(0, min(100, score)),
        school_alignment      = round_half_up(base.school * 100),
        study_alignment       = round_half_up(base.study * 100),
        learning_phase        = round_half_up(base.phi * 10) / 10,
        social_jetlag_penalty = round_half_up(base.jetlag * 100),
        adaptive_components   = {
            "observed_alignment":  base.observed,
            "predicted_alignment": {"school": base.school, "study": base.study},
            "adaptation_level":    base.rho,
            "domain_reliability":  {d: f.reliability for d, f in base.fits.items()},
        },
        sleep_metrics         = base.metrics.to_dict(),
        learning_timeline     = learning_timeline(base.phi, list(base.fits.values()), base.wake_time),
        chronotype            = chronotype_for_phase(base.phi),
        dynamic_adjustments   = adjustments,
        trend_analysis        = trend,
        lifestyle_feedback    = feedback.to_dict() if feedback else None,
        integrated            = feedback is not None,
        data_points           = len(cognitive),
        sleep_entries         = len(sleep),
    )


def calculate_simple_sync_score(responses: Optional[dict], cognitive: Optional[list[dict]] = None,
                                sleep: Optional[list[dict]] = None) -> SyncResult:
    """Survey, sessions and sleep only; no lifestyle feedback."""
    responses = responses or {}
    cognitive = cognitive or []
    sleep     = sleep or []

    base  = _base(responses, cognitive, sleep)
    score = round_half_up(base.score + base.sleep_bonus)
    adjustments = dynamic_adjustments(None, SleepMetrics(), None)
    trend = {"weekly_trend": "stable", "key_factors": [], "projected_score": score}
    return _result(base, score, adjustments, trend, None, cognitive, sleep)


def calculate_enhanced_sync_score(responses: Optional[dict], cognitive: Optional[list[dict]] = None,
                                  sleep: Optional[list[dict]] = None,
                                  lifestyle: Optional[list[dict]] = None,
                                  challenge_data: Optional[dict] = None,
                                  now_ms: Optional[int] = None) -> SyncResult:
    """
    Full model.  Lifestyle feedback is only mixed in once there are
    lifestyle factors and more than ten game sessions; otherwise this is
    the simple score.
    """
    cognitive = cognitive or []
    sleep     = sleep or []
    if not lifestyle or len(cognitive) <= MIN_FEEDBACK_SESSIONS:
        return calculate_simple_sync_score(responses, cognitive, sleep)

    responses = responses or {}
    base     = _base(responses, cognitive, sleep)
    feedback = analyze_feedback(lifestyle, outcomes_from_sessions(cognitive), challenge_data, now_ms)
    adjustments = dynamic_adjustments(feedback, base.metrics, challenge_data)

    score = round_half_up(base.score + base.sleep_bonus + sum(adjustments.values()))
    return _result(base, score, adjustments, trend_analysis(cognitive, feedback),
                   feedback, cognitive, sleep)
