"""
Prep — Friends, presence and invites  (prep/social.py)
======================================================
Presence is one row per user: status (online / offline / studying /
away), last_seen, current_activity and, while studying, the time the
study session began.  Invites carry the sender's invite code; accepting
one makes the two users friends of each other.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from prep import db
from prep.api_exceptions import ConflictError, ResourceNotFoundError
from prep.email_service import DEFAULT_INVITE_MESSAGE, send_invite_email
from prep.structured_logging import logger


MAX_PRESENCE_FRIENDS = 10
ONLINE_STATUSES      = ("online", "studying")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ──────────────────────────────────────────────
# PRESENCE
# ──────────────────────────────────────────────

def update_presence(user_id: str, status: str, current_activity: Optional[str] = None) -> dict:
    """A study session keeps its original start while the user stays in "studying"."""
    previous = db.load_presence(user_id) or {}
    study_start = None
    if status == "studying":
        study_start = previous.get("study_session_start") if previous.get("status") == "studying" else _now_iso()

    return db.save_presence(user_id, {
        "status":              status,
        "last_seen":           _now_iso(),
        "current_activity":    current_activity,
        "study_session_start": study_start,
    })


def friends_presence(user_id: str) -> list[dict]:
    friend_ids = (db.get_user(user_id).get("friends") or [])[:MAX_PRESENCE_FRIENDS]
    return [p for p in (db.load_presence(fid) for fid in friend_ids) if p]


def list_friends(user_id: str) -> dict:
    """Friends with their presence, online ones first."""
    friends = []
    for fid in db.get_user(user_id).get("friends") or []:
        try:
            friend = db.get_user(fid)
        except ResourceNotFoundError:
            logger.warning("Friend record missing", user_id=user_id, friend_id=fid)
            continue
        presence = db.load_presence(fid) or {}
        friends.append({
            "uid":                 fid,
            "name":                friend.get("name") or friend.get("username"),
            "username":            friend.get("username"),
            "chronotype":          (friend.get("chronotype") or {}).get("chronotype"),
            "status":              presence.get("status", "offline"),
            "last_seen":           presence.get("last_seen"),
            "current_activity":    presence.get("current_activity"),
            "study_session_start": presence.get("study_session_start"),
        })

    friends.sort(key=lambda f: (f["status"] not in ONLINE_STATUSES, (f["name"] or "").lower()))
    return {
        "friends":      friends,
        "online_count": sum(1 for f in friends if f["status"] in ONLINE_STATUSES),
    }


# ──────────────────────────────────────────────
# INVITES
# ──────────────────────────────────────────────

def send_invites(user: dict, emails: list[str], message: Optional[str] = None) -> dict:
    """Store an invite per address, then try to email it."""
    from_name   = user.get("name") or user.get("username") or "A friend"
    invite_code = user["invite_code"]

    emailed = 0
    for email in emails:
        db.create_invite({
            "from_user":   user["id"],
            "from_name":   from_name,
            "to_email":    email,
            "message":     message or DEFAULT_INVITE_MESSAGE,
            "status":      "pending",
            "invite_code": invite_code,
        })
        if send_invite_email(email, from_name, message, invite_code):
            emailed += 1

    logger.info("Invites stored", user_id=user["id"], count=len(emails), emailed=emailed)
    return {
        "sent":    len(emails),
        "emailed": emailed,
        "message": f"{len(emails)} invite(s) sent successfully",
    }


def accept_invite(user: dict, invite_code: str) -> dict:
    code = invite_code.strip().upper()
    if code == (user.get("invite_code") or "").upper():
        raise ConflictError("You cannot accept your own invite", "OWN_INVITE")

    pending = db.load_pending_invites(code)
    if not pending:
        raise ResourceNotFoundError("Invite", code)

    my_email = (user.get("email") or "").lower()
    invite = next((i for i in pending if i.get("to_email") == my_email), pending[0])
    if invite["from_user"] == user["id"]:
        raise ConflictError("You cannot accept your own invite", "OWN_INVITE")

    db.mark_invite_accepted(invite["id"], user["id"])
    db.add_friend(user["id"], invite["from_user"])
    return {"friend_id": invite["from_user"], "friend_name": invite.get("from_name")}
