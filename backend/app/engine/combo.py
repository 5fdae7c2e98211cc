"""
Combo tracking — consecutive correct answers, tiered multipliers, inactivity decay.
Pure state machine, no DB access.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from .clock import clamp_elapsed
from .multiplier import apply_multiplier

logger = logging.getLogger(__name__)

COMBO_TIMEOUT = timedelta(seconds=30)
COMBO_RISK_WINDOW = timedelta(seconds=10)
MAX_COMBO_MULTIPLIER = 5.0
BASE_UNIT_XP = 10


@dataclass(frozen=True)
class ComboTier:
    threshold: int
    multiplier: float
    label: str
    color: str
    emoji: str


COMBO_TIERS: list[ComboTier] = [
    ComboTier(0,  1.0, "",            "#666666", ""),
    ComboTier(3,  1.2, "Good!",       "#4CAF50", "🔥"),
    ComboTier(5,  1.5, "Great!",      "#FF9800", "⚡"),
    ComboTier(8,  2.0, "Amazing!",    "#E91E63", "💥"),
    ComboTier(12, 3.0, "Incredible!", "#9C27B0", "🚀"),
    ComboTier(15, 4.0, "Legendary!",  "#3F51B5", "⭐"),
    ComboTier(20, 5.0, "GODLIKE!",    "#FFD700", "👑"),
]


def tier_for(combo: int, tiers: list[ComboTier] = COMBO_TIERS) -> ComboTier:
    """Highest tier whose threshold <= combo. Combos past the last tier clamp to it."""
    for tier in reversed(tiers):
        if combo >= tier.threshold:
            return tier
    return tiers[0]


def next_tier_for(combo: int, tiers: list[ComboTier] = COMBO_TIERS) -> ComboTier | None:
    for tier in tiers:
        if combo < tier.threshold:
            return tier
    return None


class ComboState(BaseModel):
    current_combo: int = Field(default=0, ge=0)
    max_combo: int = Field(default=0, ge=0)
    last_answer_time: datetime | None = None
    combo_multiplier: float = Field(default=1.0, ge=1.0)
    total_bonus_xp: int = Field(default=0, ge=0)


@dataclass
class CorrectAnswerResult:
    state: ComboState
    bonus_xp: int
    tier_changed: bool
    previous_tier: ComboTier
    current_tier: ComboTier


class ComboTracker:
    def __init__(
        self,
        state: ComboState | None = None,
        timeout: timedelta = COMBO_TIMEOUT,
        max_multiplier: float = MAX_COMBO_MULTIPLIER,
        base_unit: int = BASE_UNIT_XP,
        risk_window: timedelta = COMBO_RISK_WINDOW,
        tiers: list[ComboTier] = COMBO_TIERS,
    ):
        self.timeout = timeout
        self.max_multiplier = max_multiplier
        self.base_unit = base_unit
        self.risk_window = risk_window
        self.tiers = tiers

        # combo_multiplier is always derived from current_combo
        state = state or ComboState()
        self.state = state.model_copy(update={
            "combo_multiplier": self._multiplier_for(state.current_combo),
            "max_combo": max(state.max_combo, state.current_combo),
        })

    def _multiplier_for(self, combo: int) -> float:
        return min(tier_for(combo, self.tiers).multiplier, self.max_multiplier)

    def get_combo_state(self) -> ComboState:
        return self.state.model_copy()

    def get_current_tier(self) -> ComboTier:
        return tier_for(self.state.current_combo, self.tiers)

    def get_next_tier(self) -> ComboTier | None:
        return next_tier_for(self.state.current_combo, self.tiers)

    def is_expired(self, now: datetime) -> bool:
        last = self.state.last_answer_time
        if last is None:
            return False
        return clamp_elapsed(now, last) > self.timeout

    def multiplier(self, now: datetime) -> float:
        """Multiplier in effect at `now`; a combo lapsed by timeout counts as 1x."""
        if self.state.current_combo > 0 and self.is_expired(now):
            return 1.0
        return self.state.combo_multiplier

    def record_correct_answer(self, now: datetime) -> CorrectAnswerResult:
        previous_tier = self.get_current_tier()
        state = self.state.model_copy()

        if state.current_combo > 0 and self.is_expired(now):
            logger.info("Combo of %d expired after inactivity", state.current_combo)
            state.current_combo = 0

        state.current_combo += 1
        state.last_answer_time = now
        state.max_combo = max(state.max_combo, state.current_combo)

        current_tier = tier_for(state.current_combo, self.tiers)
        state.combo_multiplier = self._multiplier_for(state.current_combo)

        bonus_xp = apply_multiplier(self.base_unit, state.combo_multiplier) - self.base_unit
        state.total_bonus_xp += bonus_xp

        self.state = state
        tier_changed = current_tier.threshold != previous_tier.threshold
        if tier_changed and current_tier.threshold > previous_tier.threshold:
            logger.info("Combo tier up: %s (x%s) at %d",
                        current_tier.label, current_tier.multiplier, state.current_combo)

        return CorrectAnswerResult(
            state=state.model_copy(),
            bonus_xp=bonus_xp,
            tier_changed=tier_changed,
            previous_tier=previous_tier,
            current_tier=current_tier,
        )

    def record_incorrect_answer(self, now: datetime) -> ComboState:
        self.state = self.state.model_copy(update={
            "current_combo": 0,
            "combo_multiplier": 1.0,
            "last_answer_time": now,
        })
        return self.state.model_copy()

    def reset_combo(self) -> ComboState:
        self.state = self.state.model_copy(update={
            "current_combo": 0,
            "combo_multiplier": 1.0,
            "last_answer_time": None,
        })
        return self.state.model_copy()

    def reset_all(self) -> ComboState:
        self.state = ComboState()
        return self.state.model_copy()

    def time_remaining(self, now: datetime) -> timedelta:
        last = self.state.last_answer_time
        if self.state.current_combo == 0 or last is None:
            return timedelta(0)
        return max(timedelta(0), self.timeout - clamp_elapsed(now, last))

    def is_at_risk(self, now: datetime) -> bool:
        remaining = self.time_remaining(now)
        return (
            self.state.current_combo > 0
            and timedelta(0) < remaining <= self.risk_window
        )
