"""
Request and response models for the Prep API with validation.
"""

import re
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Annotated, Optional, Dict, Any, Literal
from datetime import datetime, date


_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
_TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"
_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _check_date(v: str) -> str:
    date.fromisoformat(v)
    return v


IsoDate = Annotated[str, Field(pattern=_DATE_PATTERN), AfterValidator(_check_date)]
ClockTime = Annotated[str, Field(pattern=_TIME_PATTERN)]


# ══════════════════════════════════════════════
# ACCOUNT
# ══════════════════════════════════════════════

class ProfileUpdateRequest(BaseModel):
    """Profile update endpoint request."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[str] = Field(None, pattern=_EMAIL_PATTERN, max_length=254)
    age: Optional[int] = Field(None, ge=5, le=120)

    model_config = ConfigDict(json_schema_extra={
        "example": {"name": "Maya", "email": "maya@example.com", "age": 15},
    })


class SurveySubmission(BaseModel):
    """Answers to the registration chronotype survey, keyed by question id."""
    responses: Dict[str, str]

    model_config = ConfigDict(json_schema_extra={
        "example": {"responses": {"idealWakeTime": "8–10am", "animalType": "🐺 Wolf – Night owl"}},
    })


# ══════════════════════════════════════════════
# LIFESTYLE LOGS
# ══════════════════════════════════════════════

class SleepEntryRequest(BaseModel):
    """One night of sleep."""
    date: IsoDate
    bed_time: ClockTime
    wake_time: ClockTime
    waking_events: int = Field(0, ge=0, le=20)

    model_config = ConfigDict(json_schema_extra={
        "example": {"date": "2026-03-01", "bed_time": "22:45", "wake_time": "06:30", "waking_events": 1},
    })


class MealItem(BaseModel):
    time: ClockTime
    type: Literal["Light", "Medium", "Heavy"]
    description: str = Field("", max_length=200)


class HydrationItem(BaseModel):
    time: ClockTime
    type: Literal["Water", "Coffee", "Tea", "Energy Drink", "Soda"]
    amount: int = Field(..., ge=1, le=3000, description="Millilitres")
    caffeine: Optional[int] = Field(None, ge=0, le=1000, description="Milligrams; defaults per drink type")


class NutritionEntryRequest(BaseModel):
    """Meals and drinks for one day."""
    date: IsoDate
    meals: list[MealItem] = Field(default_factory=list, max_length=12)
    hydration: list[HydrationItem] = Field(default_factory=list, max_length=30)

    @model_validator(mode="after")
    def at_least_one_item(self):
        if not self.meals and not self.hydration:
            raise ValueError("Log at least one meal or drink")
        return self

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "date": "2026-03-01",
            "meals": [{"time": "07:15", "type": "Light", "description": "Oatmeal"}],
            "hydration": [{"time": "07:30", "type": "Coffee", "amount": 240}],
        },
    })


class ActivityEntryRequest(BaseModel):
    """One bout of physical activity."""
    date: IsoDate
    time: ClockTime
    type: Literal["Light", "Medium", "Intense"]
    activity: str = Field(..., min_length=1, max_length=100)
    duration: int = Field(..., ge=1, le=600, description="Minutes")


class CognitiveSessionRequest(BaseModel):
    """Telemetry from one finished game."""
    game_type: str = Field(..., min_length=1, max_length=50)
    data: Dict[str, Any] = Field(default_factory=dict)
    normalized_score: Optional[float] = Field(None, ge=0, le=1)
    timestamp: Optional[int] = Field(None, ge=0, description="Epoch milliseconds")

    model_config = ConfigDict(json_schema_extra={
        "example": {"game_type": "reactionTime", "data": {"avgReactionTime": 320, "accuracy": 92}},
    })


class NumberSequenceAnswer(BaseModel):
    """Digits the player tapped for the current round."""
    answer: list[int] = Field(..., max_length=9)
    tap_intervals_ms: list[int] = Field(default_factory=list, max_length=9)

    @field_validator("answer")
    @classmethod
    def digits_only(cls, v):
        if any(d < 1 or d > 9 for d in v):
            raise ValueError("Digits must be between 1 and 9")
        return v


# ══════════════════════════════════════════════
# SYNC SCORE
# ══════════════════════════════════════════════

class QuizResponses(BaseModel):
    """Schedule quiz answers consumed by the sync-score model."""
    natural_wake: Optional[Literal["Before 8 AM", "8–10 AM", "After 10 AM"]] = None
    focus_time: Optional[Literal["Morning", "Afternoon", "Evening"]] = None
    test_time: Optional[Literal["Morning", "Midday", "Evening"]] = None
    school_start: Optional[Literal["Before 7:30 AM", "7:30–8:00 AM", "After 8:00 AM"]] = None
    homework_time: Optional[Literal["Right after school", "After dinner", "Late at night", "Depends"]] = None
    wake_school: Optional[Literal["Before 6 AM", "6–6:59 AM", "7–7:59 AM", "8 AM or later"]] = None
    wake_feel: Optional[Literal["Wide awake", "A bit slow", "Super groggy"]] = None
    bed_weekend: Optional[Literal["Before 10 PM", "10 PM–Midnight", "After Midnight"]] = None


class SyncRequest(BaseModel):
    """Recompute the sync score; quiz answers default to the stored survey."""
    responses: Optional[QuizResponses] = None
    days: int = Field(30, ge=1, le=365)


# ══════════════════════════════════════════════
# CHALLENGES
# ══════════════════════════════════════════════

class ChallengeStartRequest(BaseModel):
    challenge_id: str = Field(..., min_length=1, max_length=60)
    target_value: Optional[Any] = None


class ChallengeLogRequest(BaseModel):
    challenge_id: str = Field(..., min_length=1, max_length=60)
    success: bool
    notes: Optional[str] = Field(None, max_length=500)


class ChallengeEvaluateRequest(BaseModel):
    challenge_id: str = Field(..., min_length=1, max_length=60)
    date: Optional[IsoDate] = None
    log: bool = Field(False, description="Record the outcome as today's progress")
    check_in: Dict[str, ClockTime] = Field(
        default_factory=dict,
        description="Self-reported clock times, e.g. screens_off_time or dim_time",
    )


class ShiftingPlanRequest(BaseModel):
    current_time: ClockTime
    target_time: ClockTime
    strategy: int = Field(0, ge=0, le=6, description="Index into the strategy list")


# ══════════════════════════════════════════════
# SOCIAL
# ══════════════════════════════════════════════

class PresenceUpdateRequest(BaseModel):
    status: Literal["online", "offline", "studying", "away"]
    current_activity: Optional[str] = Field(None, max_length=100)


class InviteSendRequest(BaseModel):
    emails: list[str] = Field(..., min_length=1, max_length=10)
    message: Optional[str] = Field(None, max_length=500)

    @field_validator("emails")
    @classmethod
    def valid_emails(cls, v):
        cleaned = []
        for email in v:
            email = email.strip().lower()
            if not re.match(_EMAIL_PATTERN, email):
                raise ValueError(f"Invalid email: {email}")
            cleaned.append(email)
        return cleaned


class InviteAcceptRequest(BaseModel):
    invite_code: str = Field(..., min_length=4, max_length=32)


# ══════════════════════════════════════════════
# RESPONSE MODELS
# ══════════════════════════════════════════════

class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    error_code: str
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "success": False,
            "error": "Username already taken",
            "error_code": "USERNAME_TAKEN",
            "details": {"field": "username"},
        },
    })


class HealthCheckResponse(BaseModel):
    """Health check response."""
    success: bool = True
    status: str = "healthy"
    timestamp: datetime
    services: Dict[str, str]
