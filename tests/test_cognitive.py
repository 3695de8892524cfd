"""Game telemetry → cognitive sessions, and the daily/peak summaries."""

import pytest

from prep.cognitive import (
    DOMAINS,
    build_session,
    cognitive_profile,
    daily_domain_scores,
    domain_for,
    extract_raw_performance,
    normalize_score,
    peak_performance,
)
from prep.lifestyle import to_epoch_ms


@pytest.mark.parametrize("game,data,expected", [
    ("colorQuick", {"accuracy": 80, "avgReactionTime": 500}, 1.6),
    ("colorQuick", {"score": 12}, 12),
    ("reactionTime", {"avgReactionTime": 250}, 4),
    ("reactionTime", {}, 0),
    ("numberSequence", {"accuracy": 73}, 73),
    ("patternMemory", {"correctAnswers": 6, "totalRounds": 8}, 75),
    ("colorSort", {"accuracy": 90, "totalGameDuration": 30000}, 3),
    ("survivalGame", {"explorationScore": 41, "score": 10}, 41),
    ("survivalGame", {"score": 10}, 10),
    ("somethingNew", {"score": "oops"}, 0),
])
def test_raw_performance(game, data, expected):
    assert extract_raw_performance(game, data) == pytest.approx(expected)


def test_domains():
    assert domain_for("numberSequence") == "memory"
    assert domain_for("colorRunner") == "problemSolving"
    assert domain_for("unknown") == "attention"


def test_normalize_against_history():
    assert normalize_score(50, []) == 0.5
    assert normalize_score(50, [50, 50]) == 0.5
    assert normalize_score(75, [50, 100]) == pytest.approx(0.5)
    assert normalize_score(120, [50, 100]) == 1.0
    assert normalize_score(40, [50, 100]) == 0.0


def test_build_session_fields():
    ts = to_epoch_ms("2026-03-02", "14:30")
    session = build_session("reactionTime", {"avgReactionTime": 250, "totalRounds": 5}, [2, 6], timestamp_ms=ts)
    assert session["domain"] == "attention"
    assert session["raw_score"] == pytest.approx(4)
    assert session["normalized_score"] == pytest.approx(0.5)
    assert session["hour_of_day"] == pytest.approx(14.5)
    assert session["timestamp"] == ts
    assert session["total_rounds"] == 5


def test_client_normalized_score_wins_when_in_range():
    assert build_session("memoryTest", {"accuracy": 10}, [], normalized_score=0.9)["normalized_score"] == 0.9
    assert build_session("memoryTest", {"accuracy": 10}, [], normalized_score=1.5)["normalized_score"] == 0.5


def _session(game, day, clock, score, duration_ms=None):
    return build_session(game, {"totalGameDuration": duration_ms}, [], normalized_score=score,
                         timestamp_ms=to_epoch_ms(day, clock))


def test_daily_domain_scores():
    sessions = [
        _session("numberSequence", "2026-03-02", "09:00", 0.6),
        _session("memoryTest", "2026-03-02", "18:00", 0.8),
        _session("reactionTime", "2026-03-02", "10:00", 0.45),
        _session("reactionTime", "2026-03-03", "10:00", 1.0),
    ]
    scores = daily_domain_scores(sessions, "2026-03-02")
    assert scores["memory"] == 70
    assert scores["attention"] == 45
    assert scores["recall"] == 0
    assert scores["date"] == "2026-03-02"
    assert scores["computed_from"]["numberSequence"] is True
    assert scores["computed_from"]["colorSort"] is False
    assert set(DOMAINS) <= set(scores)


def test_peak_performance_defaults():
    assert peak_performance([]) == {
        "best_time_of_day":         10,
        "best_day_of_week":         2,
        "optimal_session_duration": 30,
        "fatigue_threshold":        5,
    }


def test_peak_performance_hour_and_weekday():
    # 2026-03-01 is a Sunday
    sessions = [
        _session("memoryTest", "2026-03-01", "16:10", 0.9, 240000),
        _session("memoryTest", "2026-03-02", "08:00", 0.3, 120000),
        _session("memoryTest", "2026-03-03", "16:45", 0.7, 600000),
    ]
    peak = peak_performance(sessions)
    assert peak["best_time_of_day"] == 16
    assert peak["best_day_of_week"] == 0
    assert peak["optimal_session_duration"] == 4
    assert peak["fatigue_threshold"] == 3


def test_daily_scores_round_half_up():
    sessions = [_session("reactionTime", "2026-03-02", "10:00", 0.125)]
    assert daily_domain_scores(sessions, "2026-03-02")["attention"] == 13


# ============================================================================
# PROFILE
# ============================================================================

NOW = to_epoch_ms("2026-03-20", "12:00")


@pytest.fixture
def memory_sessions():
    return [
        _session("memoryTest", "2026-03-19", "12:00", 0.8),
        _session("memoryTest", "2026-03-10", "12:00", 0.4),
    ]


def test_domain_scores_by_window(memory_sessions):
    memory = cognitive_profile(memory_sessions, now_ms=NOW)["domains"]["memory"]
    assert memory["current"] == 60
    assert memory["average_7d"] == 80
    assert memory["average_30d"] == 60
    assert memory["confidence"] == pytest.approx(0.44)
    assert memory["personal_best"] == 60
    assert memory["personal_best_date"] == NOW
    [contribution] = memory["contributions"]
    assert contribution["game_type"] == "memoryTest"
    assert contribution["session_count"] == 2
    assert contribution["avg_score"] == 60
    assert contribution["reliability"] == pytest.approx(2 / 3)


def test_domain_without_sessions():
    attention = cognitive_profile([], now_ms=NOW)["domains"]["attention"]
    assert attention["current"] == 0
    assert attention["contributions"] == []
    assert attention["confidence"] == pytest.approx(0.2)


def test_first_profile_is_stable(memory_sessions):
    trend = cognitive_profile(memory_sessions, now_ms=NOW)["trends"]["memory"]
    assert trend["weekly_change"] == 0
    assert trend["trajectory"] == "stable"
    assert trend["volatility"] == 9.4
    assert trend["consistency_score"] == 91
    assert trend["momentum"] == 0


def test_trends_against_previous_profile(memory_sessions):
    previous = {"domains": {"memory": {
        "average_7d": 50, "average_30d": 60, "personal_best": 90, "personal_best_date": 123,
    }}}
    profile = cognitive_profile(memory_sessions, previous=previous, now_ms=NOW)
    trend = profile["trends"]["memory"]
    assert trend["weekly_change"] == 60.0
    assert trend["monthly_change"] == 0.0
    assert trend["yearly_change"] == 0.0
    assert trend["momentum"] == 60.0
    assert trend["trajectory"] == "improving"
    assert profile["domains"]["memory"]["personal_best"] == 90
    assert profile["domains"]["memory"]["personal_best_date"] == 123


def test_trend_declines_after_a_better_week(memory_sessions):
    previous = {"domains": {"memory": {"average_7d": 100, "average_30d": 60}}}
    trend = cognitive_profile(memory_sessions, previous=previous, now_ms=NOW)["trends"]["memory"]
    assert trend["weekly_change"] == -20.0
    assert trend["trajectory"] == "declining"


def test_percentiles_among_peers(memory_sessions):
    peers = [{"domains": {"memory": {"current": score}}} for score in (40, 60, 90)]
    percentiles = cognitive_profile(memory_sessions, peers=peers, now_ms=NOW)["percentiles"]
    assert percentiles["memory"] == 33
    assert percentiles["attention"] == 50


def test_data_quality(memory_sessions):
    quality = cognitive_profile(memory_sessions, now_ms=NOW)["data_quality"]
    assert quality == {
        "sample_size": 2,
        "recency":     1,
        "coverage":    20,
        "consistency": 44,
        "reliability": 41,
    }


def test_empty_profile():
    profile = cognitive_profile([], now_ms=NOW)
    assert profile["data_quality"]["reliability"] == 25
    assert profile["peak_performance"]["best_time_of_day"] == 10
    assert profile["last_updated"] == NOW
