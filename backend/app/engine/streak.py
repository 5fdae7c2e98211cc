"""
Streak tracking — daily continuity over calendar dates, with protection items
that cover missed days. Pure functions and state, no DB access.
"""
import logging
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Literal

from pydantic import BaseModel, Field

from .errors import InvalidTemplateError

logger = logging.getLogger(__name__)

ProtectionKind = Literal["single_use_freeze", "timeboxed_insurance", "weekend_pass"]
Urgency = Literal["safe", "warning", "critical"]

DEFAULT_RISK_HOUR = 18

SINGLE_USE_KINDS = ("single_use_freeze", "weekend_pass")


@dataclass(frozen=True)
class ProtectionTemplate:
    id: str
    name: str
    kind: str               # 'single_use_freeze' | 'timeboxed_insurance' | 'weekend_pass'
    duration_days: int      # 0 = no expiry
    cost: int
    description: str

    def validate(self) -> None:
        if self.kind not in ("single_use_freeze", "timeboxed_insurance", "weekend_pass"):
            raise InvalidTemplateError(f"unknown protection kind: {self.kind!r}")
        if self.duration_days < 0:
            raise InvalidTemplateError("protection duration cannot be negative")
        if self.kind == "timeboxed_insurance" and self.duration_days == 0:
            raise InvalidTemplateError("insurance needs a positive duration")
        if self.kind == "weekend_pass" and self.duration_days:
            raise InvalidTemplateError("weekend pass is evaluated by weekday, not expiry")


PROTECTION_TEMPLATES: list[ProtectionTemplate] = [
    ProtectionTemplate("streak_freeze",    "Streak Freeze",    "single_use_freeze",   0,  100,  "Protect your streak for 1 day if you miss learning"),
    ProtectionTemplate("streak_insurance", "Streak Insurance", "timeboxed_insurance", 30, 1500, "Premium protection for 30 days - automatically saves your streak"),
    ProtectionTemplate("weekend_pass",     "Weekend Pass",     "weekend_pass",        0,  300,  "Skip weekends without breaking your streak"),
]

PROTECTION_TEMPLATE_BY_ID: dict[str, ProtectionTemplate] = {t.id: t for t in PROTECTION_TEMPLATES}


@dataclass(frozen=True)
class StreakMilestone:
    days: int
    xp_reward: int
    badge_id: str
    title: str


STREAK_MILESTONES: list[StreakMilestone] = [
    StreakMilestone(7,  50,  "streak_seaworthy",      "Streak Seaworthy"),
    StreakMilestone(14, 100, "streak_island_legend",  "Island Legend"),
    StreakMilestone(30, 250, "streak_caribbean_king", "Caribbean King"),
]


class Protection(BaseModel):
    id: str
    template_id: str
    name: str = ""
    kind: ProtectionKind
    purchased_at: datetime
    expires_at: datetime | None = None
    is_active: bool = True

    def is_live(self, now: datetime) -> bool:
        return self.is_active and (self.expires_at is None or now < self.expires_at)


class StreakState(BaseModel):
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    last_active_date: date | None = None
    protections: list[Protection] = []
    protections_consumed_count: int = Field(default=0, ge=0)


Outcome = Literal["same_day", "continued", "started", "protected", "reset", "ignored"]


@dataclass
class ActivityResult:
    state: StreakState
    outcome: Outcome
    protection_used: Protection | None = None
    milestone: StreakMilestone | None = None


def classify_day(last_active_date: date | None, today: date) -> Outcome:
    """
    Where `today` falls relative to the last active date.
    'reset' here means a gap of at least one missed day; a protection may
    still turn it into 'protected'.
    """
    if last_active_date is None:
        return "started"
    if last_active_date == today:
        return "same_day"
    if last_active_date > today:
        return "ignored"
    if last_active_date == today - timedelta(days=1):
        return "continued"
    return "reset"


def next_milestone(current_streak: int) -> StreakMilestone | None:
    for milestone in STREAK_MILESTONES:
        if milestone.days > current_streak:
            return milestone
    return None


class StreakTracker:
    def __init__(self, state: StreakState | None = None, risk_hour: int = DEFAULT_RISK_HOUR):
        self.state = state or StreakState()
        self.state.longest_streak = max(self.state.longest_streak, self.state.current_streak)
        self.risk_hour = risk_hour

    def get_streak_state(self) -> StreakState:
        return self.state.model_copy(deep=True)

    def grant_protection(self, template: ProtectionTemplate, now: datetime) -> Protection:
        template.validate()
        protection = Protection(
            id=f"{template.id}_{uuid.uuid4().hex[:12]}",
            template_id=template.id,
            name=template.name,
            kind=template.kind,
            purchased_at=now,
            expires_at=now + timedelta(days=template.duration_days) if template.duration_days else None,
        )
        self.state.protections.append(protection)
        return protection.model_copy()

    def get_active_protections(self, now: datetime) -> list[Protection]:
        return [p.model_copy() for p in self.state.protections if p.is_live(now)]

    def has_active_protection(self, now: datetime) -> bool:
        return any(p.is_live(now) for p in self.state.protections)

    def use_protection(self, now: datetime) -> Protection | None:
        """
        Consume the best live protection for a missed day.
        Priority: insurance > weekend pass (Sat/Sun only) > oldest freeze.
        """
        live = [p for p in self.state.protections if p.is_live(now)]
        is_weekend = now.date().weekday() >= 5

        chosen = next((p for p in live if p.kind == "timeboxed_insurance"), None)
        if chosen is None and is_weekend:
            chosen = next((p for p in live if p.kind == "weekend_pass"), None)
        if chosen is None:
            freezes = sorted((p for p in live if p.kind == "single_use_freeze"),
                             key=lambda p: p.purchased_at)
            chosen = freezes[0] if freezes else None
        if chosen is None:
            return None

        if chosen.kind in SINGLE_USE_KINDS:
            chosen.is_active = False
        self.state.protections_consumed_count += 1
        logger.info("Streak protection used: %s (%s)", chosen.id, chosen.kind)
        return chosen.model_copy()

    def record_activity(self, now: datetime) -> ActivityResult:
        today = now.date()
        outcome = classify_day(self.state.last_active_date, today)

        if outcome == "same_day":
            return ActivityResult(state=self.get_streak_state(), outcome=outcome)
        if outcome == "ignored":
            logger.warning("Activity dated %s is before last active date %s; ignoring",
                           today, self.state.last_active_date)
            return ActivityResult(state=self.get_streak_state(), outcome=outcome)

        previous = self.state.current_streak
        protection = None
        if outcome == "continued":
            self.state.current_streak += 1
        elif outcome == "started":
            self.state.current_streak = 1
        else:
            protection = self.use_protection(now)
            if protection is not None:
                outcome = "protected"
            else:
                logger.info("Streak of %d lost (last active %s)", previous, self.state.last_active_date)
                self.state.current_streak = 1

        self.state.longest_streak = max(self.state.longest_streak, self.state.current_streak)
        self.state.last_active_date = today

        milestone = next(
            (m for m in STREAK_MILESTONES if previous < m.days <= self.state.current_streak),
            None,
        )
        return ActivityResult(
            state=self.get_streak_state(),
            outcome=outcome,
            protection_used=protection,
            milestone=milestone,
        )

    def is_at_risk(self, now: datetime) -> bool:
        return self.state.last_active_date != now.date() and now.hour >= self.risk_hour

    def hours_until_loss(self, now: datetime) -> int:
        """Whole hours (rounded up) until the midnight after which the streak is lost."""
        days_ahead = 2 if self.state.last_active_date == now.date() else 1
        deadline = datetime.combine(now.date() + timedelta(days=days_ahead), time(0), tzinfo=now.tzinfo)
        remaining = max(timedelta(0), deadline - now)
        return math.ceil(remaining.total_seconds() / 3600)

    def urgency(self, now: datetime) -> Urgency:
        if not self.is_at_risk(now):
            return "safe"
        if self.has_active_protection(now):
            return "warning"
        return "critical"

    @staticmethod
    def protection_time_remaining(protection: Protection, now: datetime) -> timedelta:
        if protection.expires_at is None:
            return timedelta(0)
        return max(timedelta(0), protection.expires_at - now)

    @classmethod
    def protection_time_text(cls, protection: Protection, now: datetime) -> str:
        if protection.kind == "weekend_pass":
            return "Weekends"
        if protection.expires_at is None:
            return "Until used" if protection.is_active else "Used"
        remaining = cls.protection_time_remaining(protection, now)
        if remaining == timedelta(0):
            return "Expired"

        days = math.ceil(remaining / timedelta(days=1))
        if days == 1:
            return "1 day"
        if days < 7:
            return f"{days} days"
        weeks, rest = divmod(days, 7)
        if rest == 0:
            return "1 week" if weeks == 1 else f"{weeks} weeks"
        return f"{weeks}w {rest}d"

    def next_milestone(self) -> StreakMilestone | None:
        return next_milestone(self.state.current_streak)

    def reset_streak(self) -> StreakState:
        self.state.current_streak = 0
        self.state.last_active_date = None
        return self.get_streak_state()
