"""LocalStore table operations and the db layer on top of it."""

import pytest

from prep import db
from prep.api_exceptions import (
    AuthenticationError,
    ConflictError,
    ExternalServiceError,
    ResourceNotFoundError,
    ValidationError,
)
from prep.sleep import build_sleep_entry
from prep.store import LocalStore


# ============================================================================
# LOCAL STORE
# ============================================================================

def test_insert_assigns_id_and_timestamp():
    local = LocalStore()
    row = local.insert("things", {"name": "a"})
    assert row["id"] and row["created_at"]
    assert local.select("things") == [row]


def test_select_filters_orders_and_limits():
    local = LocalStore()
    for day, owner in [("2026-03-03", "u1"), ("2026-03-01", "u1"), ("2026-03-02", "u2"), ("2026-03-05", "u1")]:
        local.insert("entries", {"date": day, "user_id": owner})

    rows = local.select("entries", where={"user_id": "u1"}, gte={"date": "2026-03-02"}, order_by="date", desc=True)
    assert [r["date"] for r in rows] == ["2026-03-05", "2026-03-03"]
    assert len(local.select("entries", order_by="date", limit=2)) == 2


def test_upsert_replaces_matching_row():
    local = LocalStore()
    first  = local.upsert("sleep", {"user_id": "u1", "date": "2026-03-01", "hours": 6}, on_conflict=["user_id", "date"])
    second = local.upsert("sleep", {"user_id": "u1", "date": "2026-03-01", "hours": 8}, on_conflict=["user_id", "date"])
    assert first["id"] == second["id"]
    assert [r["hours"] for r in local.select("sleep")] == [8]


def test_update_and_delete():
    local = LocalStore()
    local.insert("t", {"k": 1})
    local.insert("t", {"k": 2})
    assert local.update("t", {"flag": True}, where={"k": 1})[0]["flag"] is True
    assert local.update("t", {"flag": True}, where={"k": 9}) == []
    assert local.delete("t", where={"k": 2}) == 1
    assert len(local.select("t")) == 1


def test_rows_survive_reload(tmp_path):
    path = str(tmp_path / "data" / "store.json")
    LocalStore(path).insert("users", {"username": "maya"})
    assert LocalStore(path).select("users")[0]["username"] == "maya"


def test_returned_rows_are_copies():
    local = LocalStore()
    row = local.insert("t", {"items": [1]})
    row["items"].append(2)
    assert local.select("t")[0]["items"] == [1]


# ============================================================================
# USERS
# ============================================================================

def test_create_user_hashes_password(store):
    user = db.create_user("maya", "secret123", email=" Maya@Example.com ")
    assert "password" not in user
    assert user["name"] == "maya"
    assert user["email"] == "maya@example.com"
    assert len(user["invite_code"]) == db.INVITE_CODE_LENGTH
    stored = store.select("users")[0]
    assert stored["password"].startswith("$2")
    assert stored["password"] != "secret123"


@pytest.mark.parametrize("username,password", [("ab", "secret123"), ("x" * 51, "secret123"), ("maya", "12345")])
def test_create_user_validation(username, password):
    with pytest.raises(ValidationError):
        db.create_user(username, password)


def test_duplicate_username():
    db.create_user("maya", "secret123")
    with pytest.raises(ConflictError) as exc:
        db.create_user("maya", "other-password")
    assert exc.value.message == "Username already taken"


def test_login():
    created = db.create_user("maya", "secret123")
    assert db.login_user("maya", "secret123")["id"] == created["id"]
    with pytest.raises(AuthenticationError):
        db.login_user("maya", "wrong-password")
    with pytest.raises(AuthenticationError):
        db.login_user("nobody", "secret123")


def test_profile_update_ignores_unknown_fields():
    user = db.create_user("maya", "secret123")
    updated = db.update_profile(user["id"], {"name": "Maya R", "age": 15, "invite_code": "HACKED"})
    assert updated["name"] == "Maya R"
    assert updated["age"] == 15
    assert updated["invite_code"] == user["invite_code"]


def test_missing_user():
    with pytest.raises(ResourceNotFoundError):
        db.get_user("no-such-id")


def test_add_friend_is_mutual_and_idempotent():
    a = db.create_user("maya", "secret123")
    b = db.create_user("theo", "secret123")
    db.add_friend(a["id"], b["id"])
    db.add_friend(a["id"], b["id"])
    assert db.get_user(a["id"])["friends"] == [b["id"]]
    assert db.get_user(b["id"])["friends"] == [a["id"]]


def test_find_by_invite_code():
    user = db.create_user("maya", "secret123")
    assert db.find_user_by_invite_code(user["invite_code"].lower())["id"] == user["id"]
    assert db.find_user_by_invite_code("NOPE1234") is None


# ============================================================================
# LOGS
# ============================================================================

def test_sleep_entries_one_per_night_newest_first():
    from datetime import date
    uid = db.create_user("maya", "secret123")["id"]
    db.save_sleep_entry(uid, build_sleep_entry("2026-03-01", "23:00", "07:00"))
    db.save_sleep_entry(uid, build_sleep_entry("2026-03-02", "22:00", "06:00"))
    db.save_sleep_entry(uid, build_sleep_entry("2026-03-02", "23:30", "07:00", 2))
    db.save_sleep_entry(uid, build_sleep_entry("2026-01-01", "23:00", "07:00"))

    entries = db.load_sleep_entries(uid, days=30, today=date(2026, 3, 10))
    assert [e["date"] for e in entries] == ["2026-03-02", "2026-03-01"]
    assert entries[0]["bed_time"] == "23:30"
    assert "user_id" not in entries[0]
    assert db.load_entry_for_date("sleep_entries", uid, "2026-03-01")["wake_time"] == "07:00"


def test_cognitive_sessions_filters():
    uid = db.create_user("maya", "secret123")["id"]
    db.save_cognitive_session(uid, {"game_type": "reactionTime", "raw_score": 3.1, "timestamp": 200})
    db.save_cognitive_session(uid, {"game_type": "memoryTest", "raw_score": 80, "timestamp": 100})
    db.save_cognitive_session(uid, {"game_type": "reactionTime", "raw_score": 2.4, "timestamp": 300})

    assert [s["timestamp"] for s in db.load_cognitive_sessions(uid)] == [100, 200, 300]
    assert [s["timestamp"] for s in db.load_cognitive_sessions(uid, since_ms=150)] == [200, 300]
    assert db.load_raw_scores(uid, "reactionTime") == [3.1, 2.4]


def test_challenge_data_default_and_roundtrip():
    uid = db.create_user("maya", "secret123")["id"]
    assert db.load_challenge_data(uid)["active_challenges"] == []
    db.save_challenge_data(uid, {"active_challenges": [], "completed_challenges": [], "total_points": 40, "streaks": {}})
    db.save_challenge_data(uid, {"active_challenges": [], "completed_challenges": [], "total_points": 90, "streaks": {}})
    assert db.load_challenge_data(uid)["total_points"] == 90


def test_sync_cache_and_history():
    uid = db.create_user("maya", "secret123")["id"]
    cached = db.save_sync_result(uid, {"sync_score": 71, "school_alignment": 60,
                                       "study_alignment": 80, "learning_phase": 14.0})
    assert db.get_user(uid)["sync_score"] == 71
    assert cached["last_sync_update"]

    for i, score in enumerate((60, 65, 70)):
        db.append_chronotype_history(uid, {"sync_score": score, "timestamp": i})
    history = db.load_chronotype_history(uid, limit=2)
    assert [h["sync_score"] for h in history] == [70, 65]


class _BrokenStore(LocalStore):
    def insert(self, table, row):
        raise OSError("disk full")


def test_store_failures_become_service_errors():
    db.use_store(_BrokenStore())
    with pytest.raises(ExternalServiceError) as exc:
        db.create_user("maya", "secret123")
    assert exc.value.status_code == 503
    assert exc.value.message == "Failed to save user"
    assert exc.value.error_code == "STORE_UNAVAILABLE"
    assert exc.value.details == {"service": "store"}


# ============================================================================
# SUPABASE STORE
# ============================================================================

class _FakeResult:
    def __init__(self, data):
        self.data = data


class _FakeQuery:
    def __init__(self, calls, data):
        self.calls, self.data = calls, data

    def __getattr__(self, name):
        def step(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self
        return step

    def execute(self):
        return _FakeResult(self.data)


class _FakeClient:
    def __init__(self, data):
        self.calls, self.data = [], data

    def table(self, name):
        self.calls.append(("table", (name,), {}))
        return _FakeQuery(self.calls, self.data)


@pytest.fixture
def fake_supabase(monkeypatch):
    import prep.store as store_module
    client = _FakeClient([{"id": "row-1", "user_id": "u1"}])
    monkeypatch.setattr(store_module, "create_client", lambda url, key: client)
    return client


def test_supabase_select_builds_query(fake_supabase):
    from prep.store import SupabaseStore
    sb = SupabaseStore("https://abc.supabase.co", "anon-key")
    rows = sb.select("sleep_entries", where={"user_id": "u1"}, gte={"date": "2026-03-01"},
                     order_by="date", desc=True, limit=5)
    assert rows == [{"id": "row-1", "user_id": "u1"}]
    assert [c[0] for c in fake_supabase.calls] == ["table", "select", "eq", "gte", "order", "limit"]
    assert fake_supabase.calls[4] == ("order", ("date",), {"desc": True})


def test_supabase_upsert_joins_conflict_columns(fake_supabase):
    from prep.store import SupabaseStore
    SupabaseStore("https://abc.supabase.co", "anon-key").upsert(
        "sleep_entries", {"user_id": "u1", "date": "2026-03-01"}, on_conflict=["user_id", "date"],
    )
    assert fake_supabase.calls[-1][2] == {"on_conflict": "user_id,date"}


def test_supabase_requires_real_credentials():
    from prep.store import SupabaseStore
    with pytest.raises(RuntimeError):
        SupabaseStore("https://your-project-ref.supabase.co", "key")
    with pytest.raises(RuntimeError):
        SupabaseStore("https://abc.supabase.co", "")
