"""
XP boost inventory — stacked multiplicative boosts, timed or usage-counted.

Liveness is computed from stored timestamps on every read; nothing here relies
on a timer having fired, so an inventory reloaded days later is still correct.
"""
import logging
import math
import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from pydantic import BaseModel, Field

from .errors import InvalidTemplateError
from .multiplier import combine

logger = logging.getLogger(__name__)

BoostKind = Literal["timed", "usage_based"]

DEFAULT_MAX_COMBINED_MULTIPLIER = 25.0


@dataclass(frozen=True)
class BoostTemplate:
    id: str
    name: str
    kind: str               # 'timed' | 'usage_based'
    multiplier: float
    duration_minutes: int   # timed only
    uses: int               # usage_based only
    rarity: str
    cost: int
    description: str

    def validate(self) -> None:
        if self.kind not in ("timed", "usage_based"):
            raise InvalidTemplateError(f"unknown boost kind: {self.kind!r}")
        if not self.multiplier > 1:
            raise InvalidTemplateError(f"boost multiplier must be > 1, got {self.multiplier}")
        if self.kind == "timed" and self.duration_minutes <= 0:
            raise InvalidTemplateError("timed boost needs a positive duration")
        if self.kind == "usage_based" and self.uses <= 0:
            raise InvalidTemplateError("usage-based boost needs a positive use count")


BOOST_TEMPLATES: list[BoostTemplate] = [
    BoostTemplate("speed_demon",     "Speed Demon",     "timed",       2.0,  10,  0, "common",    50,  "2x XP for 10 minutes"),
    BoostTemplate("power_hour",      "Power Hour",      "timed",       3.0,  60,  0, "rare",      150, "3x XP for 1 hour"),
    BoostTemplate("mega_boost",      "Mega Boost",      "timed",       5.0,  30,  0, "epic",      300, "5x XP for 30 minutes"),
    BoostTemplate("lesson_master",   "Lesson Master",   "usage_based", 2.5,  0,   3, "common",    75,  "2.5x XP for next 3 lessons"),
    BoostTemplate("weekend_warrior", "Weekend Warrior", "timed",       1.5,  720, 0, "rare",      200, "1.5x XP for 12 hours"),
    BoostTemplate("legendary_surge", "Legendary Surge", "timed",       10.0, 5,   0, "legendary", 500, "10x XP for 5 minutes"),
]

BOOST_TEMPLATE_BY_ID: dict[str, BoostTemplate] = {t.id: t for t in BOOST_TEMPLATES}

# Reward draws: roll in [0, 100); above 90 is epic, above 60 rare, else common.
RANDOM_RARITY_CUTOFFS: list[tuple[float, str]] = [(90, "epic"), (60, "rare")]


class Boost(BaseModel):
    id: str
    template_id: str
    name: str = ""
    kind: BoostKind
    multiplier: float = Field(gt=1)
    activated_at: datetime
    expires_at: datetime | None = None
    uses_remaining: int | None = Field(default=None, ge=0)

    def is_live(self, now: datetime) -> bool:
        if self.kind == "timed":
            return self.expires_at is not None and now < self.expires_at
        return (self.uses_remaining or 0) > 0


class BoostState(BaseModel):
    active_boosts: list[Boost] = []
    available_boosts: list[str] = []   # owned, not yet activated (template ids)
    total_xp_boosted: int = Field(default=0, ge=0)
    boosts_activated_count: int = Field(default=0, ge=0)


class BoostInventory:
    def __init__(
        self,
        state: BoostState | None = None,
        max_combined_multiplier: float = DEFAULT_MAX_COMBINED_MULTIPLIER,
    ):
        self.state = state or BoostState()
        self.max_combined_multiplier = max_combined_multiplier

    def _evict(self, now: datetime) -> list[Boost]:
        live = [b for b in self.state.active_boosts if b.is_live(now)]
        if len(live) != len(self.state.active_boosts):
            expired = [b.id for b in self.state.active_boosts if not b.is_live(now)]
            logger.info("Evicting %d spent boost(s): %s", len(expired), ", ".join(expired))
            self.state.active_boosts = live
        return live

    def activate(self, template: BoostTemplate, now: datetime) -> Boost:
        template.validate()
        boost = Boost(
            id=f"{template.id}_{uuid.uuid4().hex[:12]}",
            template_id=template.id,
            name=template.name,
            kind=template.kind,
            multiplier=template.multiplier,
            activated_at=now,
            expires_at=now + timedelta(minutes=template.duration_minutes) if template.kind == "timed" else None,
            uses_remaining=template.uses if template.kind == "usage_based" else None,
        )
        self.state.active_boosts.append(boost)
        self.state.boosts_activated_count += 1
        logger.info("Boost activated: %s (x%s)", boost.id, boost.multiplier)
        return boost.model_copy()

    def gift_boost(self, template: BoostTemplate) -> None:
        """Put a boost in the owned inventory without activating it."""
        template.validate()
        self.state.available_boosts.append(template.id)

    def add_random_boost(self, rng: random.Random) -> BoostTemplate | None:
        """
        Draw a non-legendary boost by rarity weight (common 60, rare 30, epic 10)
        and add it to the owned inventory. None if no template has that rarity.
        """
        roll = rng.random() * 100
        rarity = next((r for cutoff, r in RANDOM_RARITY_CUTOFFS if roll > cutoff), "common")
        eligible = [t for t in BOOST_TEMPLATES if t.rarity == rarity and t.rarity != "legendary"]
        if not eligible:
            return None
        template = rng.choice(eligible)
        self.state.available_boosts.append(template.id)
        logger.info("Random boost drawn: %s (%s)", template.id, rarity)
        return template

    def activate_owned(self, template: BoostTemplate, now: datetime) -> Boost:
        """Activate one owned copy of `template`; KeyError if none is owned."""
        if template.id not in self.state.available_boosts:
            raise KeyError(template.id)
        boost = self.activate(template, now)
        self.state.available_boosts.remove(template.id)
        return boost
        return boost.model_copy()

    def consume_one_lesson_usage(self) -> None:
        """Call once per completed lesson, not per answer."""
        for boost in self.state.active_boosts:
            if boost.kind == "usage_based" and (boost.uses_remaining or 0) > 0:
                boost.uses_remaining -= 1
        self.state.active_boosts = [
            b for b in self.state.active_boosts
            if b.kind != "usage_based" or (b.uses_remaining or 0) > 0
        ]

    def current_multiplier(self, now: datetime) -> float:
        live = self._evict(now)
        if not live:
            return 1.0
        total = combine(*(b.multiplier for b in live))
        if self.max_combined_multiplier and total > self.max_combined_multiplier:
            return self.max_combined_multiplier
        return total

    def list_active(self, now: datetime) -> list[Boost]:
        return [b.model_copy() for b in self._evict(now)]

    def get_boost_state(self, now: datetime) -> BoostState:
        self._evict(now)
        return self.state.model_copy(deep=True)

    def record_boosted_xp(self, bonus: int) -> None:
        if bonus < 0:
            raise ValueError("boosted XP cannot be negative")
        self.state.total_xp_boosted += bonus

    def reset(self) -> None:
        self.state = BoostState()

    @staticmethod
    def time_remaining(boost: Boost, now: datetime) -> timedelta | None:
        """Time left on a timed boost; None for usage-based (show uses_remaining)."""
        if boost.kind != "timed" or boost.expires_at is None:
            return None
        return max(timedelta(0), boost.expires_at - now)

    @classmethod
    def is_expiring_soon(cls, boost: Boost, now: datetime,
                         threshold: timedelta = timedelta(seconds=60)) -> bool:
        remaining = cls.time_remaining(boost, now)
        return remaining is not None and timedelta(0) < remaining <= threshold

    @classmethod
    def time_remaining_text(cls, boost: Boost, now: datetime) -> str:
        remaining = cls.time_remaining(boost, now)
        if remaining is None:
            return f"{boost.uses_remaining or 0} lessons"
        seconds = math.ceil(remaining.total_seconds())
        if seconds == 0:
            return "Expired"
        minutes, secs = divmod(seconds, 60)
        if minutes > 60:
            hours, mins = divmod(minutes, 60)
            return f"{hours}h {mins}m"
        if minutes > 0:
            return f"{minutes}m {secs}s"
        return f"{secs}s"
