"""
Prep — Database Layer

Handles: user auth (signup/login), profile and survey, sleep / nutrition /
activity logs, cognitive sessions, challenge progress, cached sync score
and its history, presence and friend invites.
All passwords are bcrypt-hashed — never stored in plaintext.

Records live in whichever store `create_store` picks from the settings
(Supabase, or a local JSON file).  Tests swap it with `use_store`.
"""

import secrets
import string
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

import bcrypt

from prep.api_exceptions import (
    AuthenticationError,
    ConflictError,
    ExternalServiceError,
    PrepAPIError,
    ResourceNotFoundError,
    ValidationError,
)
from prep.config import settings
from prep.store import create_store
from prep.structured_logging import logger

_db: Any = None

INVITE_CODE_LENGTH = 8
_PRIVATE_FIELDS = ("password",)


def get_db():
    global _db
    if _db is None:
        _db = create_store(settings)
    return _db


def use_store(store) -> None:
    """Replace the active store (tests point this at a temporary LocalStore)."""
    global _db
    _db = store


@contextmanager
def _saving(what: str):
    """Store failures become a 503 with a 'Failed to save ...' message."""
    try:
        yield
    except PrepAPIError:
        raise
    except Exception as e:
        logger.error(f"Failed to save {what}", exc_info=repr(e))
        raise ExternalServiceError("store", f"Failed to save {what}") from e


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _strip(row: dict, *extra: str) -> dict:
    return {k: v for k, v in row.items() if k not in ("id", "user_id", "created_at") + extra}


# ──────────────────────────────────────────────
# AUTH
# ──────────────────────────────────────────────

def _public(user: dict) -> dict:
    return {k: v for k, v in user.items() if k not in _PRIVATE_FIELDS}


def _new_invite_code() -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(INVITE_CODE_LENGTH))


def create_user(username: str, password: str, name: Optional[str] = None,
                email: Optional[str] = None) -> dict:
    """Register a new user and return it (without the password hash)."""
    db = get_db()

    username = (username or "").strip()
    if len(username) < 3 or len(username) > 50:
        raise ValidationError("Username must be 3-50 characters", field="username")
    if len(password or "") < 6:
        raise ValidationError("Password must be at least 6 characters", field="password")

    if db.select("users", where={"username": username}, limit=1):
        raise ConflictError("Username already taken", "USERNAME_TAKEN", {"field": "username"})

    hashed = bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()
    with _saving("user"):
        user = db.insert("users", {
            "username":    username,
            "password":    hashed,
            "name":        name or username,
            "email":       (email or "").strip().lower() or None,
            "age":         None,
            "invite_code": _new_invite_code(),
            "friends":     [],
            "chronotype":  None,
        })
    return _public(user)


def login_user(username: str, password: str) -> dict:
    """Verify credentials and return the user, or raise AuthenticationError."""
    db   = get_db()
    rows = db.select("users", where={"username": (username or "").strip()}, limit=1)

    if not rows or not bcrypt.checkpw((password or "").encode(), rows[0]["password"].encode()):
        raise AuthenticationError("Invalid username or password")
    return _public(rows[0])


# ──────────────────────────────────────────────
# PROFILES
# ──────────────────────────────────────────────

def get_user(user_id: str) -> dict:
    rows = get_db().select("users", where={"id": user_id}, limit=1)
    if not rows:
        raise ResourceNotFoundError("User", user_id)
    return _public(rows[0])


def find_user_by_invite_code(invite_code: str) -> Optional[dict]:
    rows = get_db().select("users", where={"invite_code": invite_code.strip().upper()}, limit=1)
    return _public(rows[0]) if rows else None


def update_profile(user_id: str, values: dict) -> dict:
    """Apply the non-empty fields of `values` (name, email, age) to the user."""
    changes = {k: v for k, v in values.items() if k in ("name", "email", "age") and v is not None}
    if "email" in changes:
        changes["email"] = changes["email"].strip().lower()
    if not changes:
        return get_user(user_id)
    with _saving("profile"):
        rows = get_db().update("users", changes, where={"id": user_id})
    if not rows:
        raise ResourceNotFoundError("User", user_id)
    return _public(rows[0])


def save_survey(user_id: str, record: dict) -> dict:
    """Cache the chronotype record built from the registration survey."""
    with _saving("survey responses"):
        rows = get_db().update("users", {"chronotype": record}, where={"id": user_id})
    if not rows:
        raise ResourceNotFoundError("User", user_id)
    return _public(rows[0])


def add_friend(user_id: str, friend_id: str) -> None:
    """Make the two users friends of each other."""
    db = get_db()
    for me, other in ((user_id, friend_id), (friend_id, user_id)):
        friends = get_user(me).get("friends") or []
        if other not in friends:
            with _saving("friend list"):
                db.update("users", {"friends": friends + [other]}, where={"id": me})


# ──────────────────────────────────────────────
# LIFESTYLE LOGS
# ──────────────────────────────────────────────

def _cutoff(days: int, today: Optional[date] = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    return (today - timedelta(days=days)).isoformat()


def save_sleep_entry(user_id: str, entry: dict) -> dict:
    """One row per user and night; a second save for the same date replaces the first."""
    with _saving("sleep entry"):
        row = get_db().upsert(
            "sleep_entries",
            {**entry, "user_id": user_id, "updated_at": _now_iso()},
            on_conflict=["user_id", "date"],
        )
    return _strip(row)


def load_sleep_entries(user_id: str, days: int = 30, today: Optional[date] = None) -> list[dict]:
    """Entries from the last `days` days, newest first."""
    rows = get_db().select(
        "sleep_entries",
        where={"user_id": user_id},
        gte={"date": _cutoff(days, today)},
        order_by="date",
        desc=True,
    )
    return [_strip(r, "updated_at") for r in rows]


def load_entry_for_date(table: str, user_id: str, day: str) -> Optional[dict]:
    """The sleep or nutrition entry logged for one date, if any."""
    rows = get_db().select(table, where={"user_id": user_id, "date": day}, limit=1)
    return _strip(rows[0], "updated_at") if rows else None


def save_nutrition_entry(user_id: str, entry: dict) -> dict:
    with _saving("nutrition entry"):
        row = get_db().upsert(
            "nutrition_entries",
            {**entry, "user_id": user_id, "updated_at": _now_iso()},
            on_conflict=["user_id", "date"],
        )
    return _strip(row)


def load_nutrition_entries(user_id: str, days: int = 30, today: Optional[date] = None) -> list[dict]:
    rows = get_db().select(
        "nutrition_entries",
        where={"user_id": user_id},
        gte={"date": _cutoff(days, today)},
        order_by="date",
        desc=True,
    )
    return [_strip(r, "updated_at") for r in rows]


def save_activity_entry(user_id: str, entry: dict) -> dict:
    with _saving("activity entry"):
        row = get_db().insert("activity_entries", {**entry, "user_id": user_id})
    return _strip(row)


def load_activity_entries(user_id: str, days: int = 30, today: Optional[date] = None) -> list[dict]:
    rows = get_db().select(
        "activity_entries",
        where={"user_id": user_id},
        gte={"date": _cutoff(days, today)},
        order_by="timestamp",
        desc=True,
    )
    return [_strip(r) for r in rows]


# ──────────────────────────────────────────────
# COGNITIVE SESSIONS
# ──────────────────────────────────────────────

def save_cognitive_session(user_id: str, session: dict) -> dict:
    with _saving("game session"):
        row = get_db().insert("cognitive_sessions", {**session, "user_id": user_id})
    return _strip(row)


def load_cognitive_sessions(user_id: str, since_ms: Optional[int] = None,
                            game_type: Optional[str] = None) -> list[dict]:
    """Sessions oldest first."""
    where = {"user_id": user_id}
    if game_type:
        where["game_type"] = game_type
    rows = get_db().select(
        "cognitive_sessions",
        where=where,
        gte={"timestamp": since_ms} if since_ms is not None else None,
        order_by="timestamp",
    )
    return [_strip(r) for r in rows]


def load_raw_scores(user_id: str, game_type: str) -> list[float]:
    """Previous raw performance numbers for one game, for normalization."""
    return [s["raw_score"] for s in load_cognitive_sessions(user_id, game_type=game_type)
            if s.get("raw_score") is not None]


def load_cognitive_profile(user_id: str) -> Optional[dict]:
    """The last profile computed for the user, used for trends and personal bests."""
    rows = get_db().select("cognitive_profiles", where={"user_id": user_id}, limit=1)
    return rows[0]["profile"] if rows else None


def load_cognitive_profiles(limit: int = 1000) -> list[dict]:
    """Stored profiles of every user, for percentiles."""
    return [r["profile"] for r in get_db().select("cognitive_profiles", limit=limit)]


def save_cognitive_profile(user_id: str, profile: dict) -> dict:
    with _saving("cognitive profile"):
        get_db().upsert(
            "cognitive_profiles",
            {"user_id": user_id, "profile": profile, "updated_at": _now_iso()},
            on_conflict=["user_id"],
        )
    return profile


# ──────────────────────────────────────────────
# CHALLENGES
# ──────────────────────────────────────────────

def load_challenge_data(user_id: str) -> dict:
    rows = get_db().select("challenge_data", where={"user_id": user_id}, limit=1)
    if not rows:
        return {"active_challenges": [], "completed_challenges": [], "total_points": 0, "streaks": {}}
    return _strip(rows[0], "updated_at")


def save_challenge_data(user_id: str, data: dict) -> dict:
    with _saving("challenge progress"):
        row = get_db().upsert(
            "challenge_data",
            {**data, "user_id": user_id, "updated_at": _now_iso()},
            on_conflict=["user_id"],
        )
    return _strip(row, "updated_at")


# ──────────────────────────────────────────────
# SYNC SCORE
# ──────────────────────────────────────────────

def save_sync_result(user_id: str, result: dict) -> dict:
    """Cache the headline numbers of the latest computation on the user row."""
    cached = {
        "sync_score":       result["sync_score"],
        "school_alignment": result["school_alignment"],
        "study_alignment":  result["study_alignment"],
        "learning_phase":   result["learning_phase"],
        "last_sync_update": _now_iso(),
    }
    with _saving("sync score"):
        rows = get_db().update("users", cached, where={"id": user_id})
    if not rows:
        raise ResourceNotFoundError("User", user_id)
    return cached


def append_chronotype_history(user_id: str, snapshot: dict) -> dict:
    with _saving("chronotype history"):
        row = get_db().insert("chronotype_history", {**snapshot, "user_id": user_id})
    return _strip(row)


def load_chronotype_history(user_id: str, limit: int = 20) -> list[dict]:
    """Newest first."""
    rows = get_db().select(
        "chronotype_history",
        where={"user_id": user_id},
        order_by="timestamp",
        desc=True,
        limit=limit,
    )
    return [_strip(r) for r in rows]


# ──────────────────────────────────────────────
# PRESENCE & INVITES
# ──────────────────────────────────────────────

def save_presence(user_id: str, presence: dict) -> dict:
    with _saving("presence"):
        row = get_db().upsert("user_presence", {**presence, "user_id": user_id}, on_conflict=["user_id"])
    return {k: v for k, v in row.items() if k not in ("id", "created_at")}


def load_presence(user_id: str) -> Optional[dict]:
    rows = get_db().select("user_presence", where={"user_id": user_id}, limit=1)
    if not rows:
        return None
    return {k: v for k, v in rows[0].items() if k not in ("id", "created_at")}


def create_invite(invite: dict) -> dict:
    with _saving("invite"):
        return get_db().insert("invites", invite)


def load_pending_invites(invite_code: str) -> list[dict]:
    return get_db().select(
        "invites",
        where={"invite_code": invite_code.strip().upper(), "status": "pending"},
        order_by="created_at",
    )


def mark_invite_accepted(invite_id: str, accepted_by: str) -> None:
    with _saving("invite"):
        get_db().update(
            "invites",
            {"status": "accepted", "accepted_by": accepted_by, "accepted_at": _now_iso()},
            where={"id": invite_id},
        )
