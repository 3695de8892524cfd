"""
Prep — Chronotype survey  (prep/chronotype.py)
==============================================
The registration survey (7 chronotype questions + 10 school-schedule
questions), its validation, the animal classification, the quick
"out of sync" estimate, and the translation of survey answers into the
schedule-quiz answers the sync-score model consumes.

Public API:
  SURVEY_QUESTIONS
  validate_survey(responses) -> dict
  determine_chronotype(responses) -> str
  calculate_out_of_sync(responses) -> int
  quiz_from_survey(responses) -> dict
  sync_score_trend(history) -> dict
"""
from __future__ import annotations

import statistics
from datetime import datetime, timezone

from prep.api_exceptions import ValidationError
from prep.sleep import round_half_up


CHRONOTYPE_QUESTIONS = [
    {"id": "idealWakeTime", "question": "If you were completely free to plan your day, what time would you get up?",
     "options": ["Before 6am", "6–8am", "8–10am", "After 10am"]},
    {"id": "alertTime", "question": "When do you feel most alert?",
     "options": ["Morning", "Afternoon", "Evening", "Late Night"]},
    {"id": "bestMentalTime", "question": "What time of day do you perform best mentally?",
     "options": ["Morning", "Midday", "Evening", "It varies"]},
    {"id": "morningFeel", "question": "How do you feel during the first 30 minutes after waking up?",
     "options": ["Very alert", "Somewhat alert", "Somewhat tired", "Very tired"]},
    {"id": "preferredSleepTime", "question": "What time would you prefer to go to sleep?",
     "options": ["Before 9pm", "9–10pm", "10–11pm", "After 11pm"]},
    {"id": "difficultyWaking", "question": "How difficult is it for you to get up in the morning?",
     "options": ["Very easy", "Fairly easy", "Somewhat difficult", "Very difficult"]},
    {"id": "animalType", "question": "Which of these animal sleep patterns feels most like you?",
     "options": [
         "🦁 Lion – Early bird, productive in mornings, early to bed",
         "🐻 Bear – Follows the sun, sociable, best with a regular schedule",
         "🐺 Wolf – Night owl, alert in evenings, hates early mornings",
         "🐬 Dolphin – Light sleeper, erratic routine, can not follow fixed schedules",
     ]},
]

SCHEDULE_QUESTIONS = [
    {"id": "schoolWake", "question": "What time do you usually wake up on school days?",
     "options": ["Before 6am", "6–7am", "7–8am", "After 8am"]},
    {"id": "schoolStart", "question": "What time does your school day start?",
     "options": ["Before 7am", "7–8am", "8–9am", "After 9am"]},
    {"id": "lunchTime", "question": "When is your usual lunch time at school?",
     "options": ["Before 11am", "11–12pm", "12–1pm", "After 1pm"]},
    {"id": "schoolEnd", "question": "What time do you usually go home after school?",
     "options": ["Before 3pm", "3–4pm", "4–5pm", "After 5pm"]},
    {"id": "afterSchoolAcademics", "question": "Do you have after school academic activities (e.g. AOPS, RSM, Tutoring)?",
     "options": ["Yes, every day", "Yes, 2–3 times a week", "Yes, occasionally", "No"]},
    {"id": "postSchoolMeals", "question": "When do you usually eat meals after school?",
     "options": ["3–4pm", "4–6pm", "6–8pm", "After 8pm"]},
    {"id": "bedTime", "question": "What time do you usually go to bed?",
     "options": ["Before 9pm", "9–10pm", "10–11pm", "After 11pm"]},
    {"id": "weekendControl", "question": "On weekends, are you allowed to choose your own sleep/wake times?",
     "options": ["Yes, always", "Yes, sometimes", "No, my schedule stays the same"]},
    {"id": "weekendSleep", "question": "When do you usually go to sleep on weekends?",
     "options": ["Before 9pm", "9–10pm", "10–11pm", "After 11pm"]},
    {"id": "weekendWake", "question": "When do you usually wake up on weekends?",
     "options": ["Before 7am", "7–8am", "8–9am", "After 9am"]},
]

SURVEY_QUESTIONS = CHRONOTYPE_QUESTIONS + SCHEDULE_QUESTIONS
_OPTIONS = {q["id"]: q["options"] for q in SURVEY_QUESTIONS}

_WAKE_HOURS = {
    "Before 6am": 6, "6–7am": 6.5, "6–8am": 7, "7–8am": 7.5,
    "8–10am": 9, "After 8am": 9, "After 10am": 11,
}
_SLEEP_HOURS = {"Before 9pm": 21, "9–10pm": 21.5, "10–11pm": 22.5, "After 11pm": 24}


def validate_survey(responses: dict) -> dict:
    """Every question answered with one of its listed options."""
    missing = [qid for qid in _OPTIONS if not responses.get(qid)]
    if missing:
        raise ValidationError(
            f"Please answer all questions. Missing: {len(missing)} question(s)",
            field="responses",
            error_code="SURVEY_INCOMPLETE",
            details={"missing": missing},
        )
    for qid, options in _OPTIONS.items():
        if responses[qid] not in options:
            raise ValidationError(f"Unknown option for {qid}: {responses[qid]}", field=qid, error_code="UNKNOWN_OPTION")
    return {qid: responses[qid] for qid in _OPTIONS}


def determine_chronotype(responses: dict) -> str:
    animal = responses.get("animalType") or ""
    for name in ("Lion", "Wolf", "Dolphin"):
        if name in animal:
            return name
    return "Bear"


def calculate_out_of_sync(responses: dict) -> int:
    """Distance between ideal and school-day sleep windows, as a percentage of 12 h."""
    ideal_wake   = _WAKE_HOURS.get(responses.get("idealWakeTime"), 7)
    school_wake  = _WAKE_HOURS.get(responses.get("schoolWake"), 7)
    ideal_sleep  = _SLEEP_HOURS.get(responses.get("preferredSleepTime"), 22)
    school_sleep = _SLEEP_HOURS.get(responses.get("bedTime"), 22)

    wake_diff  = abs(ideal_wake - school_wake)
    sleep_diff = abs(ideal_sleep - school_sleep)
    return round_half_up((wake_diff + sleep_diff) / 12 * 100)


def chronotype_record(responses: dict) -> dict:
    """Object cached on the user row after the survey is submitted."""
    return {
        "chronotype":  determine_chronotype(responses),
        "out_of_sync": calculate_out_of_sync(responses),
        "responses":   responses,
        "timestamp":   datetime.now(timezone.utc).isoformat(),
    }


# ──────────────────────────────────────────────
# SURVEY → SYNC QUIZ
# ──────────────────────────────────────────────

_NATURAL_WAKE = {
    "Before 6am": "Before 8 AM", "6–8am": "Before 8 AM",
    "8–10am": "8–10 AM", "After 10am": "After 10 AM",
}
_FOCUS_TIME = {"Morning": "Morning", "Afternoon": "Afternoon", "Evening": "Evening", "Late Night": "Evening"}
_TEST_TIME  = {"Morning": "Morning", "Midday": "Midday", "Evening": "Evening"}
_SCHOOL_START = {
    "Before 7am": "Before 7:30 AM", "7–8am": "7:30–8:00 AM",
    "8–9am": "After 8:00 AM", "After 9am": "After 8:00 AM",
}
_WAKE_SCHOOL = {
    "Before 6am": "Before 6 AM", "6–7am": "6–6:59 AM",
    "7–8am": "7–7:59 AM", "After 8am": "8 AM or later",
}
_WAKE_FEEL = {
    "Very alert": "Wide awake", "Somewhat alert": "A bit slow",
    "Somewhat tired": "A bit slow", "Very tired": "Super groggy",
}
_BED_WEEKEND = {
    "Before 9pm": "Before 10 PM", "9–10pm": "Before 10 PM",
    "10–11pm": "10 PM–Midnight", "After 11pm": "10 PM–Midnight",
}


def _homework_time(responses: dict) -> str:
    if responses.get("postSchoolMeals") == "After 8pm":
        return "Late at night"
    academics = responses.get("afterSchoolAcademics")
    if academics in ("Yes, every day", "Yes, 2–3 times a week"):
        return "After dinner"
    if academics == "No":
        return "Right after school"
    return "Depends"


def quiz_from_survey(responses: dict) -> dict:
    """Unknown or missing answers are left as None and fall back to model defaults."""
    return {
        "natural_wake":  _NATURAL_WAKE.get(responses.get("idealWakeTime")),
        "focus_time":    _FOCUS_TIME.get(responses.get("alertTime")),
        "test_time":     _TEST_TIME.get(responses.get("bestMentalTime")),
        "school_start":  _SCHOOL_START.get(responses.get("schoolStart")),
        "homework_time": _homework_time(responses),
        "wake_school":   _WAKE_SCHOOL.get(responses.get("schoolWake")),
        "wake_feel":     _WAKE_FEEL.get(responses.get("morningFeel")),
        "bed_weekend":   _BED_WEEKEND.get(responses.get("weekendSleep")),
    }


# ──────────────────────────────────────────────
# HISTORY
# ──────────────────────────────────────────────

def sync_score_trend(history: list[dict]) -> dict:
    """`history` is newest first, as returned by the store."""
    if len(history) < 2:
        return {"trend": "stable", "change": 0}

    recent = history[:5]
    older  = history[5:10]
    if not older:
        return {"trend": "stable", "change": 0}

    change = (statistics.mean(h.get("sync_score") or 0 for h in recent)
              - statistics.mean(h.get("sync_score") or 0 for h in older))
    if change > 5:
        return {"trend": "improving", "change": change}
    if change < -5:
        return {"trend": "declining", "change": change}
    return {"trend": "stable", "change": change}
