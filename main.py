"""
Prep — FastAPI Backend
Scoring and bookkeeping live in prep/. Frontend templates live in templates/.
"""

import os
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Form, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware

from prep import __version__, db
from prep import challenges as ch
from prep import number_sequence, social
from prep.api_exceptions import AuthenticationError, PrepAPIError, ResourceNotFoundError, ValidationError, envelope
from prep.api_models import (
    ActivityEntryRequest,
    ChallengeEvaluateRequest,
    ChallengeLogRequest,
    ChallengeStartRequest,
    CognitiveSessionRequest,
    ErrorResponse,
    HealthCheckResponse,
    InviteAcceptRequest,
    InviteSendRequest,
    NumberSequenceAnswer,
    NutritionEntryRequest,
    PresenceUpdateRequest,
    ProfileUpdateRequest,
    ShiftingPlanRequest,
    SleepEntryRequest,
    SurveySubmission,
    SyncRequest,
)
from prep.chronotype import (
    SURVEY_QUESTIONS,
    chronotype_record,
    quiz_from_survey,
    sync_score_trend,
    validate_survey,
)
from prep.cognitive import build_session, cognitive_profile, daily_domain_scores, peak_performance
from prep.config import settings
from prep.feedback_engine import analyze_feedback, outcomes_from_sessions
from prep.lifestyle import build_activity_entry, build_nutrition_entry, lifestyle_factors, now_ms, to_epoch_ms
from prep.rate_limiter import get_rate_limiter
from prep.sleep import build_sleep_entry, sleep_metrics
from prep.structured_logging import logger, setup_json_logging
from prep.sync_score import calculate_enhanced_sync_score

BASE_DIR     = os.path.dirname(os.path.abspath(__file__))
DAY_MS       = 24 * 3600 * 1000
PROFILE_DAYS = 30

# every route documents the shared error envelope
ERROR_RESPONSES = {code: {"model": ErrorResponse} for code in (401, 404, 409, 422, 429, 503)}

app = FastAPI(title="Prep", version=__version__, responses=ERROR_RESPONSES)
app.add_middleware(SessionMiddleware, secret_key=settings.secret_key)
app.mount("/static", StaticFiles(directory=os.path.join(BASE_DIR, "static")), name="static")
templates = Jinja2Templates(directory=os.path.join(BASE_DIR, "templates"))


@app.on_event("startup")
async def startup():
    setup_json_logging(settings.log_file, settings.log_level)
    logger.info("Prep started", store=db.get_db().name, email_enabled=settings.email_enabled)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.log_request(request.method, request.url.path)
    start = time.perf_counter()
    response = await call_next(request)
    logger.log_response(response.status_code, (time.perf_counter() - start) * 1000)
    logger.clear_context()
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(x) for x in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=422,
                        content=envelope("Request validation failed", "VALIDATION_ERROR", {"errors": errors}))


@app.exception_handler(PrepAPIError)
async def prep_exception_handler(request: Request, exc: PrepAPIError):
    logger.warning(f"API Error: {exc.error_code} - {exc.message}", status_code=exc.status_code)
    return exc.to_response()


# ── helpers ───────────────────────────────────────────────────────────────────

def current_user(request: Request) -> dict:
    uid = request.session.get("user_id")
    if not uid:
        raise AuthenticationError("Not logged in", "NOT_LOGGED_IN")
    try:
        return db.get_user(uid)
    except ResourceNotFoundError:
        request.session.clear()
        raise AuthenticationError("Session expired, please log in again", "SESSION_EXPIRED")


def _limit(request: Request, endpoint: str, username: Optional[str] = None):
    get_rate_limiter().check_rate_limit(request, endpoint, username)


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def _start_session(request: Request, user: dict):
    request.session["user_id"]  = user["id"]
    request.session["username"] = user["username"]


# ══════════════════════════════════════════════
# PAGE ROUTES
# ══════════════════════════════════════════════

@app.get("/", response_class=HTMLResponse)
async def login_page(request: Request):
    return templates.TemplateResponse(request, "login.html")

@app.get("/signup", response_class=HTMLResponse)
async def signup_page(request: Request, ref: str = ""):
    return templates.TemplateResponse(request, "signup.html", {"ref": ref})

@app.get("/dashboard", response_class=HTMLResponse)
async def dashboard_page(request: Request):
    if not request.session.get("user_id"):
        return RedirectResponse("/", status_code=303)
    return templates.TemplateResponse(request, "dashboard.html", {
        "username":  request.session.get("username", ""),
        "questions": SURVEY_QUESTIONS,
        "challenges": ch.CHALLENGES,
    })


# ══════════════════════════════════════════════
# AUTH API
# ══════════════════════════════════════════════

@app.post("/api/signup")
async def signup(request: Request,
                 username: str = Form(...),
                 password: str = Form(...),
                 name: str = Form(""),
                 email: str = Form("")):
    _limit(request, "/api/signup")
    user = db.create_user(username, password, name=name or None, email=email or None)
    _start_session(request, user)
    logger.log_auth_attempt(username, True, request.client.host if request.client else None)
    return JSONResponse({"success": True, "user": user})


@app.post("/api/login")
async def api_login(request: Request,
                    username: str = Form(...),
                    password: str = Form(...)):
    _limit(request, "/api/login")
    ip = request.client.host if request.client else None
    try:
        user = db.login_user(username, password)
    except AuthenticationError:
        logger.log_auth_attempt(username, False, ip)
        raise
    _start_session(request, user)
    logger.log_auth_attempt(username, True, ip)
    return JSONResponse({"success": True, "user": user})


# keep /login working for plain HTML form posts
@app.post("/login")
async def login(request: Request,
                username: str = Form(...),
                password: str = Form(...)):
    return await api_login(request, username, password)


@app.post("/api/logout")
async def logout(request: Request):
    request.session.clear()
    return JSONResponse({"success": True})


# ══════════════════════════════════════════════
# PROFILE + SURVEY API
# ══════════════════════════════════════════════

@app.get("/api/me")
async def me(user: dict = Depends(current_user)):
    return JSONResponse({"success": True, "user": user})


@app.put("/api/profile")
async def update_profile_ep(body: ProfileUpdateRequest, user: dict = Depends(current_user)):
    updated = db.update_profile(user["id"], body.model_dump(exclude_none=True))
    return JSONResponse({"success": True, "user": updated})


@app.get("/api/survey")
async def survey_questions():
    return JSONResponse({"success": True, "questions": SURVEY_QUESTIONS})


@app.post("/api/survey")
async def submit_survey(body: SurveySubmission, user: dict = Depends(current_user)):
    responses = validate_survey(body.responses)
    record    = chronotype_record(responses)
    db.save_survey(user["id"], record)
    return JSONResponse({
        "success":     True,
        "chronotype":  record["chronotype"],
        "out_of_sync": record["out_of_sync"],
    })


# ══════════════════════════════════════════════
# LIFESTYLE LOGS API
# ══════════════════════════════════════════════

@app.post("/api/sleep")
async def log_sleep(body: SleepEntryRequest, user: dict = Depends(current_user)):
    entry = build_sleep_entry(body.date, body.bed_time, body.wake_time, body.waking_events)
    return JSONResponse({"success": True, "entry": db.save_sleep_entry(user["id"], entry)})


@app.get("/api/sleep")
async def get_sleep(days: int = Query(30, ge=1, le=365), user: dict = Depends(current_user)):
    entries = db.load_sleep_entries(user["id"], days)
    return JSONResponse({
        "success": True,
        "entries": entries,
        "metrics": sleep_metrics(entries).to_dict(),
    })


@app.post("/api/nutrition")
async def log_nutrition(body: NutritionEntryRequest, user: dict = Depends(current_user)):
    entry = build_nutrition_entry(
        body.date,
        [m.model_dump() for m in body.meals],
        [h.model_dump() for h in body.hydration],
    )
    return JSONResponse({"success": True, "entry": db.save_nutrition_entry(user["id"], entry)})


@app.get("/api/nutrition")
async def get_nutrition(days: int = Query(30, ge=1, le=365), user: dict = Depends(current_user)):
    return JSONResponse({"success": True, "entries": db.load_nutrition_entries(user["id"], days)})


@app.post("/api/activity")
async def log_activity(body: ActivityEntryRequest, user: dict = Depends(current_user)):
    entry = build_activity_entry(body.date, body.time, body.type, body.activity, body.duration)
    return JSONResponse({"success": True, "entry": db.save_activity_entry(user["id"], entry)})


@app.get("/api/activity")
async def get_activity(days: int = Query(30, ge=1, le=365), user: dict = Depends(current_user)):
    return JSONResponse({"success": True, "entries": db.load_activity_entries(user["id"], days)})


# ══════════════════════════════════════════════
# COGNITIVE API
# ══════════════════════════════════════════════

@app.post("/api/cognitive/sessions")
async def log_cognitive_session(body: CognitiveSessionRequest, user: dict = Depends(current_user)):
    history = db.load_raw_scores(user["id"], body.game_type)
    session = build_session(body.game_type, body.data, history,
                            normalized_score=body.normalized_score,
                            timestamp_ms=body.timestamp)
    return JSONResponse({"success": True, "session": db.save_cognitive_session(user["id"], session)})


@app.get("/api/cognitive/sessions")
async def get_cognitive_sessions(days: int = Query(30, ge=1, le=365), user: dict = Depends(current_user)):
    sessions = db.load_cognitive_sessions(user["id"], since_ms=now_ms() - days * DAY_MS)
    return JSONResponse({"success": True, "sessions": sessions})


@app.get("/api/cognitive/summary")
async def cognitive_summary(day: Optional[str] = None, user: dict = Depends(current_user)):
    sessions = db.load_cognitive_sessions(user["id"])
    return JSONResponse({
        "success": True,
        "daily":   daily_domain_scores(sessions, day or _today()),
        "peak":    peak_performance(sessions),
    })


@app.get("/api/cognitive/profile")
async def cognitive_profile_ep(user: dict = Depends(current_user)):
    uid = user["id"]
    sessions = db.load_cognitive_sessions(uid, since_ms=now_ms() - PROFILE_DAYS * DAY_MS)
    profile  = cognitive_profile(sessions, db.load_cognitive_profile(uid), db.load_cognitive_profiles())
    return JSONResponse({"success": True, "profile": db.save_cognitive_profile(uid, profile)})


# ── number sequence game ──────────────────────────────────────────────────────

@app.post("/api/games/number-sequence/start")
async def number_sequence_start(user: dict = Depends(current_user)):
    game = number_sequence.start_game(user["id"])
    return JSONResponse({"success": True, "sequence": game.sequence, "state": game.state()})


@app.post("/api/games/number-sequence/answer")
async def number_sequence_answer(body: NumberSequenceAnswer, user: dict = Depends(current_user)):
    game   = number_sequence.get_game(user["id"])
    result = game.submit(body.answer, body.tap_intervals_ms)
    if not result["finished"]:
        return JSONResponse({"success": True, **result})

    history = db.load_raw_scores(user["id"], "numberSequence")
    session = build_session("numberSequence", game.session_data(), history)
    saved   = db.save_cognitive_session(user["id"], session)
    number_sequence.end_game(user["id"])
    return JSONResponse({"success": True, **result, "summary": game.summary(), "session": saved})


@app.get("/api/games/number-sequence/state")
async def number_sequence_state(user: dict = Depends(current_user)):
    game = number_sequence.get_game(user["id"])
    return JSONResponse({"success": True, "sequence": game.sequence, "state": game.state()})


# ══════════════════════════════════════════════
# SYNC SCORE + INSIGHTS API
# ══════════════════════════════════════════════

def _lifestyle(uid: str, days: int) -> tuple[list, list]:
    """(sleep entries, lifestyle factors) for the window."""
    sleep = db.load_sleep_entries(uid, days)
    factors = lifestyle_factors(
        sleep,
        db.load_nutrition_entries(uid, days),
        db.load_activity_entries(uid, days),
    )
    return sleep, factors


@app.post("/api/sync")
async def compute_sync(request: Request, body: SyncRequest, user: dict = Depends(current_user)):
    _limit(request, "/api/sync", user["username"])
    uid = user["id"]

    if body.responses is not None:
        responses = body.responses.model_dump()
    elif user.get("chronotype"):
        responses = quiz_from_survey(user["chronotype"].get("responses") or {})
    else:
        raise ValidationError("Complete the chronotype survey first", field="responses", error_code="SURVEY_REQUIRED")

    sessions       = db.load_cognitive_sessions(uid, since_ms=now_ms() - body.days * DAY_MS)
    sleep, factors = _lifestyle(uid, body.days)
    challenge_data = db.load_challenge_data(uid)

    result = calculate_enhanced_sync_score(responses, sessions, sleep, factors, challenge_data).to_dict()
    db.save_sync_result(uid, result)
    db.append_chronotype_history(uid, {
        "chronotype":       result["chronotype"]["chronotype"],
        "sync_score":       result["sync_score"],
        "out_of_sync":      result["chronotype"]["out_of_sync"],
        "school_alignment": result["school_alignment"],
        "study_alignment":  result["study_alignment"],
        "learning_phase":   result["learning_phase"],
        "sleep_quality":    result["sleep_metrics"]["average_quality"],
        "data_points":      result["data_points"],
        "sleep_entries":    result["sleep_entries"],
        "timestamp":        now_ms(),
    })
    logger.log_sync_computed(uid, result["sync_score"], result["chronotype"]["chronotype"],
                             result["adaptive_components"]["adaptation_level"], len(sessions))
    return JSONResponse({"success": True, "result": result})


@app.get("/api/sync")
async def cached_sync(user: dict = Depends(current_user)):
    return JSONResponse({
        "success":          True,
        "sync_score":       user.get("sync_score"),
        "school_alignment": user.get("school_alignment"),
        "study_alignment":  user.get("study_alignment"),
        "learning_phase":   user.get("learning_phase"),
        "last_sync_update": user.get("last_sync_update"),
    })


@app.get("/api/sync/history")
async def sync_history(limit: int = Query(20, ge=1, le=100), user: dict = Depends(current_user)):
    history = db.load_chronotype_history(user["id"], limit)
    return JSONResponse({"success": True, "history": history, "trend": sync_score_trend(history)})


@app.get("/api/insights")
async def insights(days: int = Query(30, ge=1, le=365), user: dict = Depends(current_user)):
    uid = user["id"]
    sessions   = db.load_cognitive_sessions(uid, since_ms=now_ms() - days * DAY_MS)
    _, factors = _lifestyle(uid, days)
    analysis = analyze_feedback(factors, outcomes_from_sessions(sessions), db.load_challenge_data(uid))
    return JSONResponse({"success": True, "analysis": analysis.to_dict()})


# ══════════════════════════════════════════════
# CHALLENGES API
# ══════════════════════════════════════════════

@app.get("/api/challenges")
async def challenge_catalog():
    return JSONResponse({
        "success":    True,
        "challenges": ch.CHALLENGES,
        "strategies": ch.SHIFTING_STRATEGIES,
    })


@app.get("/api/challenges/state")
async def challenge_state(user: dict = Depends(current_user)):
    data = db.load_challenge_data(user["id"])
    return JSONResponse({
        "success":      True,
        "data":         data,
        "stats":        ch.challenge_stats(data),
        "achievements": ch.achievements(data),
    })


@app.get("/api/challenges/stats")
async def challenge_stats_ep(user: dict = Depends(current_user)):
    data = db.load_challenge_data(user["id"])
    return JSONResponse({"success": True, "stats": ch.challenge_stats(data), "achievements": ch.achievements(data)})


@app.post("/api/challenges/start")
async def start_challenge(body: ChallengeStartRequest, user: dict = Depends(current_user)):
    data = ch.start_challenge(db.load_challenge_data(user["id"]), body.challenge_id, body.target_value, _today())
    return JSONResponse({"success": True, "data": db.save_challenge_data(user["id"], data)})


@app.post("/api/challenges/log")
async def log_challenge(body: ChallengeLogRequest, user: dict = Depends(current_user)):
    data, progress = ch.log_progress(db.load_challenge_data(user["id"]), body.challenge_id,
                                     body.success, body.notes)
    saved = db.save_challenge_data(user["id"], data)
    return JSONResponse({
        "success":      True,
        "progress":     progress,
        "data":         saved,
        "achievements": ch.achievements(saved),
    })


@app.post("/api/challenges/evaluate")
async def evaluate_challenge(body: ChallengeEvaluateRequest, user: dict = Depends(current_user)):
    uid  = user["id"]
    data = db.load_challenge_data(uid)
    progress = next((p for p in data["active_challenges"] if p["challenge_id"] == body.challenge_id), None)
    if progress is None:
        raise ResourceNotFoundError("Active challenge", body.challenge_id, "CHALLENGE_NOT_ACTIVE")

    day   = body.date or _today()
    start = to_epoch_ms(day, "00:00")
    sessions = [s for s in db.load_cognitive_sessions(uid, since_ms=start) if s["timestamp"] < start + DAY_MS]
    outcome = ch.evaluate_day(body.challenge_id, progress, {
        "sleep":     db.load_entry_for_date("sleep_entries", uid, day),
        "nutrition": db.load_entry_for_date("nutrition_entries", uid, day),
        "sessions":  sessions,
        "check_in":  body.check_in,
    })

    if body.log and outcome["evaluated"]:
        data, progress = ch.log_progress(data, body.challenge_id, outcome["success"], outcome["reason"])
        db.save_challenge_data(uid, data)
    return JSONResponse({"success": True, "date": day, "outcome": outcome, "progress": progress})


@app.post("/api/challenges/shifting-plan")
async def shifting_plan(body: ShiftingPlanRequest):
    strategy = ch.SHIFTING_STRATEGIES[body.strategy]
    return JSONResponse({
        "success": True,
        "plan":    ch.calculate_shifting_plan(body.current_time, body.target_time, strategy),
    })


# ══════════════════════════════════════════════
# FRIENDS / PRESENCE / INVITES API
# ══════════════════════════════════════════════

@app.get("/api/friends")
async def friends(user: dict = Depends(current_user)):
    return JSONResponse({"success": True, **social.list_friends(user["id"])})


@app.get("/api/presence/friends")
async def friends_presence(user: dict = Depends(current_user)):
    return JSONResponse({"success": True, "presence": social.friends_presence(user["id"])})


@app.post("/api/presence")
async def update_presence(body: PresenceUpdateRequest, user: dict = Depends(current_user)):
    presence = social.update_presence(user["id"], body.status, body.current_activity)
    return JSONResponse({"success": True, "presence": presence})


# plain def: FastAPI runs it in the threadpool, so blocking SMTP stays off the event loop
@app.post("/api/invites/send")
def send_invites(request: Request, body: InviteSendRequest, user: dict = Depends(current_user)):
    _limit(request, "/api/invites/send", user["username"])
    return JSONResponse({"success": True, **social.send_invites(user, body.emails, body.message)})


@app.post("/api/invites/accept")
async def accept_invite(body: InviteAcceptRequest, user: dict = Depends(current_user)):
    return JSONResponse({"success": True, **social.accept_invite(user, body.invite_code)})


# ══════════════════════════════════════════════
# HEALTH
# ══════════════════════════════════════════════

@app.get("/health", response_model=HealthCheckResponse)
async def health():
    store = db.get_db()
    try:
        store_status = "healthy" if store.ping() else "unhealthy"
    except Exception as e:
        logger.error("Store health check failed", exc_info=repr(e))
        store_status = "unhealthy"
    return HealthCheckResponse(
        status    = "healthy" if store_status == "healthy" else "degraded",
        timestamp = datetime.now(timezone.utc),
        services  = {store.name: store_status, "email": "configured" if settings.email_enabled else "disabled"},
    )
