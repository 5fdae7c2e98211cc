"""
Reward composition — combo multiplier x boost multiplier applied to base XP.
Reads tracker state only; never mutates combo or boost state.
"""
from dataclasses import dataclass
from datetime import datetime

from .boosts import BoostInventory
from .combo import ComboTracker
from .multiplier import apply_multiplier, combine


@dataclass(frozen=True)
class RewardBreakdown:
    base_xp: int
    final_xp: int
    combo_multiplier: float
    boost_multiplier: float
    total_multiplier: float
    bonus_xp: int
    boost_bonus_xp: int     # floor(base * boost) - base, for the boost audit trail


def compute_reward(base_xp: int, combo_multiplier: float, boost_multiplier: float) -> RewardBreakdown:
    if base_xp < 0:
        raise ValueError("base XP cannot be negative")
    total = combine(combo_multiplier, boost_multiplier)
    final_xp = apply_multiplier(base_xp, total)
    return RewardBreakdown(
        base_xp=base_xp,
        final_xp=final_xp,
        combo_multiplier=combo_multiplier,
        boost_multiplier=boost_multiplier,
        total_multiplier=total,
        bonus_xp=final_xp - base_xp,
        boost_bonus_xp=apply_multiplier(base_xp, boost_multiplier) - base_xp,
    )


class RewardCalculator:
    def __init__(self, combo: ComboTracker, boosts: BoostInventory):
        self.combo = combo
        self.boosts = boosts
        self.last_result: RewardBreakdown | None = None

    def award(self, base_xp: int, now: datetime) -> RewardBreakdown:
        result = compute_reward(
            base_xp,
            self.combo.multiplier(now),
            self.boosts.current_multiplier(now),
        )
        self.last_result = result
        return result
