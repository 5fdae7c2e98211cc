"""
Reward Engine — FastAPI backend
"""
import logging
import random
from dataclasses import asdict
from datetime import tzinfo

from fastapi import FastAPI, Header, HTTPException, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .config import get_config
from .db import get_gateway
from .engine.boosts import BOOST_TEMPLATES, BOOST_TEMPLATE_BY_ID, BoostInventory
from .engine.clock import ClockSource, SystemClock, ZonedClock, parse_timezone
from .engine.errors import InvalidTemplateError, PersistenceError
from .engine.streak import PROTECTION_TEMPLATES, PROTECTION_TEMPLATE_BY_ID, ActivityResult
from .models import (
    ActivityOut, BoostActivation, CorrectAnswerOut, MilestoneOut,
    ProtectionGrant, TierOut, XPAwardOut, XPAwardRequest,
)
from .session import EngineSession

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
app = FastAPI(title="Reward Engine API")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:8081", "http://localhost:19006"],
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type", "X-Timezone"],
)


@app.exception_handler(InvalidTemplateError)
def invalid_template_handler(request: Request, exc: InvalidTemplateError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(PersistenceError)
def persistence_error_handler(request: Request, exc: PersistenceError):
    return JSONResponse(status_code=503, content={"detail": "Progress storage unavailable, try again"})


@app.get("/health")
def health():
    try:
        gateway = get_gateway("healthcheck", get_config().snapshot_backend)
        gateway.load("combo")
        return {"status": "ok", "db": "ok"}
    except Exception as e:
        logger.error("Health check DB failure: %s", e)
        raise HTTPException(status_code=503, detail="DB unavailable")


# ── Session ───────────────────────────────────────────────────────────────────

def get_clock() -> ClockSource:
    return SystemClock()


def get_rng() -> random.Random:
    return random.Random()


def get_user_id(authorization: str = Header(...)) -> str:
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    user_id = authorization.removeprefix("Bearer ").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    return user_id


def get_timezone(x_timezone: str | None = Header(None)) -> tzinfo | None:
    """The caller's zone decides where its calendar days start; absent means server-local."""
    if x_timezone is None:
        return None
    try:
        return parse_timezone(x_timezone)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


def get_session(
    user_id: str = Depends(get_user_id),
    tz: tzinfo | None = Depends(get_timezone),
) -> EngineSession:
    cfg = get_config()
    clock = get_clock()
    if tz is not None:
        clock = ZonedClock(clock, tz)
    return EngineSession(get_gateway(user_id, cfg.snapshot_backend), cfg, clock)


def _activity_out(result: ActivityResult) -> dict:
    return ActivityOut(
        outcome=result.outcome,
        current_streak=result.state.current_streak,
        longest_streak=result.state.longest_streak,
        protection_used=result.protection_used.id if result.protection_used else None,
        milestone=MilestoneOut(**asdict(result.milestone)) if result.milestone else None,
    ).model_dump()


# ── Combo ─────────────────────────────────────────────────────────────────────

@app.get("/api/combo")
def get_combo(session: EngineSession = Depends(get_session)):
    now = session.now()
    combo = session.combo
    next_tier = combo.get_next_tier()
    return {
        **session.get_combo_state().model_dump(mode="json"),
        "current_tier": asdict(combo.get_current_tier()),
        "next_tier": asdict(next_tier) if next_tier else None,
        "seconds_remaining": combo.time_remaining(now).total_seconds(),
        "at_risk": combo.is_at_risk(now),
    }


@app.post("/api/combo/correct")
@limiter.limit("120/minute")
def combo_correct(request: Request, session: EngineSession = Depends(get_session)):
    result = session.record_correct_answer()
    return CorrectAnswerOut(
        current_combo=result.state.current_combo,
        max_combo=result.state.max_combo,
        combo_multiplier=result.state.combo_multiplier,
        total_bonus_xp=result.state.total_bonus_xp,
        bonus_xp=result.bonus_xp,
        tier_changed=result.tier_changed,
        previous_tier=TierOut(**asdict(result.previous_tier)),
        current_tier=TierOut(**asdict(result.current_tier)),
    ).model_dump()


@app.post("/api/combo/incorrect")
@limiter.limit("120/minute")
def combo_incorrect(request: Request, session: EngineSession = Depends(get_session)):
    return session.record_incorrect_answer().model_dump(mode="json")


@app.post("/api/combo/reset")
@limiter.limit("10/minute")
def combo_reset(request: Request, everything: bool = Query(False, alias="all"), session: EngineSession = Depends(get_session)):
    return session.reset_combo(everything=everything).model_dump(mode="json")


# ── Boosts ────────────────────────────────────────────────────────────────────

@app.get("/api/boosts")
def get_boosts(session: EngineSession = Depends(get_session)):
    now = session.now()
    state = session.get_boost_state()
    boosts = []
    for boost in state.active_boosts:
        remaining = BoostInventory.time_remaining(boost, now)
        boosts.append({
            **boost.model_dump(mode="json"),
            "seconds_remaining": remaining.total_seconds() if remaining is not None else None,
            "remaining_text": BoostInventory.time_remaining_text(boost, now),
            "expiring_soon": BoostInventory.is_expiring_soon(boost, now),
        })
    return {
        "active_boosts": boosts,
        "multiplier": session.boosts.current_multiplier(now),
        "available_boosts": state.available_boosts,
        "total_xp_boosted": state.total_xp_boosted,
        "boosts_activated_count": state.boosts_activated_count,
    }


@app.get("/api/boosts/catalog")
def get_boost_catalog():
    return {"templates": [asdict(t) for t in BOOST_TEMPLATES]}


@app.post("/api/boosts", status_code=201)
@limiter.limit("30/minute")
def activate_boost(request: Request, body: BoostActivation, session: EngineSession = Depends(get_session)):
    template = BOOST_TEMPLATE_BY_ID.get(body.template_id)
    if template is None:
        raise HTTPException(status_code=404, detail="Unknown boost template")
    if not body.from_inventory:
        return session.activate_boost(template).model_dump(mode="json")
    try:
        boost = session.activate_owned_boost(template)
    except KeyError:
        raise HTTPException(status_code=409, detail="Boost not in inventory")
    return boost.model_dump(mode="json")


@app.post("/api/boosts/inventory", status_code=201)
@limiter.limit("10/minute")
def gift_boost(request: Request, body: BoostActivation, session: EngineSession = Depends(get_session)):
    template = BOOST_TEMPLATE_BY_ID.get(body.template_id)
    if template is None:
        raise HTTPException(status_code=404, detail="Unknown boost template")
    session.gift_boost(template)
    return {"available_boosts": session.get_boost_state().available_boosts}


@app.post("/api/boosts/random", status_code=201)
@limiter.limit("10/minute")
def random_boost(request: Request, session: EngineSession = Depends(get_session), rng: random.Random = Depends(get_rng)):
    template = session.add_random_boost(rng)
    return {
        "drawn": asdict(template) if template else None,
        "available_boosts": session.get_boost_state().available_boosts,
    }


@app.post("/api/lessons/complete")
@limiter.limit("30/minute")
def complete_lesson(request: Request, session: EngineSession = Depends(get_session)):
    result = session.complete_lesson()
    return {
        "streak": _activity_out(result),
        "boost_multiplier": session.boosts.current_multiplier(session.now()),
    }


# ── Streak ────────────────────────────────────────────────────────────────────

@app.get("/api/streak")
def get_streak(session: EngineSession = Depends(get_session)):
    now = session.now()
    streak = session.streak
    milestone = streak.next_milestone()
    protections = []
    for p in streak.get_active_protections(now):
        protections.append({
            **p.model_dump(mode="json"),
            "seconds_remaining": streak.protection_time_remaining(p, now).total_seconds(),
            "remaining_text": streak.protection_time_text(p, now),
        })
    state = session.get_streak_state()
    return {
        "current_streak": state.current_streak,
        "longest_streak": state.longest_streak,
        "last_active_date": state.last_active_date.isoformat() if state.last_active_date else None,
        "protections_consumed_count": state.protections_consumed_count,
        "active_protections": protections,
        "at_risk": streak.is_at_risk(now),
        "hours_until_loss": streak.hours_until_loss(now),
        "urgency": streak.urgency(now),
        "next_milestone": asdict(milestone) if milestone else None,
    }


@app.post("/api/streak/activity")
@limiter.limit("30/minute")
def record_activity(request: Request, session: EngineSession = Depends(get_session)):
    return _activity_out(session.record_activity())


@app.get("/api/streak/catalog")
def get_protection_catalog():
    return {"templates": [asdict(t) for t in PROTECTION_TEMPLATES]}


@app.post("/api/streak/protections", status_code=201)
@limiter.limit("10/minute")
def grant_protection(request: Request, body: ProtectionGrant, session: EngineSession = Depends(get_session)):
    template = PROTECTION_TEMPLATE_BY_ID.get(body.template_id)
    if template is None:
        raise HTTPException(status_code=404, detail="Unknown protection template")
    protection = session.grant_protection(template)
    return protection.model_dump(mode="json")


# ── XP ────────────────────────────────────────────────────────────────────────

@app.post("/api/xp/award")
@limiter.limit("120/minute")
def award_xp(request: Request, body: XPAwardRequest, session: EngineSession = Depends(get_session)):
    result = session.award(body.base_xp)
    if result.bonus_xp > 0:
        logger.info("Award: %d base -> %d XP (x%s)", result.base_xp, result.final_xp, result.total_multiplier)
    return XPAwardOut(
        base_xp=result.base_xp,
        final_xp=result.final_xp,
        combo_multiplier=result.combo_multiplier,
        boost_multiplier=result.boost_multiplier,
        total_multiplier=result.total_multiplier,
        bonus_xp=result.bonus_xp,
    ).model_dump()
