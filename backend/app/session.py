"""
Per-user engine session: one combo tracker, boost inventory and streak tracker,
loaded from snapshots on creation and saved after every mutation.
"""
import logging
import random
from datetime import datetime
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from .config import EngineConfig
from .db import BOOSTS_KEY, COMBO_KEY, STREAK_KEY, PersistenceGateway
from .engine.boosts import Boost, BoostInventory, BoostState, BoostTemplate
from .engine.clock import ClockSource, SystemClock
from .engine.combo import ComboState, ComboTracker, CorrectAnswerResult
from .engine.rewards import RewardBreakdown, RewardCalculator
from .engine.streak import ActivityResult, Protection, ProtectionTemplate, StreakState, StreakTracker

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=BaseModel)


def _restore(model: type[S], snapshot, key: str) -> S | None:
    """Parse a stored snapshot; anything unreadable is treated as no snapshot."""
    if snapshot is None:
        return None
    try:
        return model.model_validate(snapshot)
    except (ValidationError, TypeError, ValueError) as e:
        logger.warning("Discarding corrupt %s snapshot: %s", key, e)
        return None


class EngineSession:
    def __init__(
        self,
        gateway: PersistenceGateway,
        config: EngineConfig | None = None,
        clock: ClockSource | None = None,
    ):
        self.gateway = gateway
        self.config = config or EngineConfig()
        self.clock = clock or SystemClock()

        cfg = self.config
        self.combo = ComboTracker(
            _restore(ComboState, gateway.load(COMBO_KEY), COMBO_KEY),
            timeout=cfg.combo_timeout,
            max_multiplier=cfg.combo_max_multiplier,
            base_unit=cfg.combo_base_unit,
            risk_window=cfg.combo_risk_window,
        )
        self.boosts = BoostInventory(
            _restore(BoostState, gateway.load(BOOSTS_KEY), BOOSTS_KEY),
            max_combined_multiplier=cfg.boost_max_combined_multiplier,
        )
        self.streak = StreakTracker(
            _restore(StreakState, gateway.load(STREAK_KEY), STREAK_KEY),
            risk_hour=cfg.streak_risk_hour,
        )
        self.rewards = RewardCalculator(self.combo, self.boosts)

    def now(self) -> datetime:
        return self.clock.now()

    # ── Persistence ───────────────────────────────────────────────────────────

    def _save(self, key: str) -> None:
        state = {COMBO_KEY: self.combo.state, BOOSTS_KEY: self.boosts.state, STREAK_KEY: self.streak.state}[key]
        self.gateway.save(key, state.model_dump(mode="json"))

    def save_all(self) -> None:
        for key in (COMBO_KEY, BOOSTS_KEY, STREAK_KEY):
            self._save(key)

    # ── Snapshots ─────────────────────────────────────────────────────────────

    def get_combo_state(self) -> ComboState:
        return self.combo.get_combo_state()

    def get_boost_state(self) -> BoostState:
        return self.boosts.get_boost_state(self.now())

    def get_streak_state(self) -> StreakState:
        return self.streak.get_streak_state()

    # ── Event intake ──────────────────────────────────────────────────────────

    def record_correct_answer(self) -> CorrectAnswerResult:
        result = self.combo.record_correct_answer(self.now())
        self._save(COMBO_KEY)
        return result

    def record_incorrect_answer(self) -> ComboState:
        state = self.combo.record_incorrect_answer(self.now())
        self._save(COMBO_KEY)
        return state

    def reset_combo(self, everything: bool = False) -> ComboState:
        state = self.combo.reset_all() if everything else self.combo.reset_combo()
        self._save(COMBO_KEY)
        return state

    def activate_boost(self, template: BoostTemplate) -> Boost:
        boost = self.boosts.activate(template, self.now())
        self._save(BOOSTS_KEY)
        return boost

    def activate_owned_boost(self, template: BoostTemplate) -> Boost:
        boost = self.boosts.activate_owned(template, self.now())
        self._save(BOOSTS_KEY)
        return boost

    def gift_boost(self, template: BoostTemplate) -> None:
        self.boosts.gift_boost(template)
        self._save(BOOSTS_KEY)

    def add_random_boost(self, rng: random.Random | None = None) -> BoostTemplate | None:
        template = self.boosts.add_random_boost(rng or random.Random())
        if template is not None:
            self._save(BOOSTS_KEY)
        return template

    def consume_one_lesson_usage(self) -> None:
        self.boosts.consume_one_lesson_usage()
        self._save(BOOSTS_KEY)

    def record_activity(self) -> ActivityResult:
        result = self.streak.record_activity(self.now())
        if result.outcome not in ("same_day", "ignored"):
            self._save(STREAK_KEY)
        return result

    def complete_lesson(self) -> ActivityResult:
        """A finished lesson spends one use of each usage-based boost and counts as activity."""
        self.boosts.consume_one_lesson_usage()
        result = self.streak.record_activity(self.now())
        self._save(BOOSTS_KEY)
        self._save(STREAK_KEY)
        return result

    def grant_protection(self, template: ProtectionTemplate) -> Protection:
        protection = self.streak.grant_protection(template, self.now())
        self._save(STREAK_KEY)
        return protection

    def reset_everything(self) -> None:
        """Explicit user reset: all three trackers back to their zero state."""
        self.combo.reset_all()
        self.boosts.reset()
        self.streak.state = StreakState()
        self.save_all()

    def award(self, base_xp: int) -> RewardBreakdown:
        """Compute the final XP for base_xp and add the boost share to the boost audit total."""
        result = self.rewards.award(base_xp, self.now())
        if result.boost_bonus_xp > 0:
            self.boosts.record_boosted_xp(result.boost_bonus_xp)
            self._save(BOOSTS_KEY)
        return result
