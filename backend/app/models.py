import re
from typing import Literal

from pydantic import BaseModel, Field, field_validator

TEMPLATE_ID_RE = re.compile(r"^[a-z0-9_]+$")


def _validate_template_id(v: str) -> str:
    v = v.strip().lower()
    if not TEMPLATE_ID_RE.match(v):
        raise ValueError("template_id must be lowercase letters, digits or underscores")
    return v


class BoostActivation(BaseModel):
    template_id: str = Field(min_length=1, max_length=64)
    from_inventory: bool = False

    @field_validator("template_id")
    @classmethod
    def validate_template_id(cls, v):
        return _validate_template_id(v)


class ProtectionGrant(BaseModel):
    template_id: str = Field(min_length=1, max_length=64)

    @field_validator("template_id")
    @classmethod
    def validate_template_id(cls, v):
        return _validate_template_id(v)


class XPAwardRequest(BaseModel):
    base_xp: int = Field(ge=0, le=100_000)
    model_config = {"extra": "ignore"}


class TierOut(BaseModel):
    threshold: int
    multiplier: float
    label: str
    color: str
    emoji: str


class CorrectAnswerOut(BaseModel):
    current_combo: int
    max_combo: int
    combo_multiplier: float
    total_bonus_xp: int
    bonus_xp: int
    tier_changed: bool
    previous_tier: TierOut
    current_tier: TierOut


class XPAwardOut(BaseModel):
    base_xp: int
    final_xp: int
    combo_multiplier: float
    boost_multiplier: float
    total_multiplier: float
    bonus_xp: int


class MilestoneOut(BaseModel):
    days: int
    xp_reward: int
    badge_id: str
    title: str


class ActivityOut(BaseModel):
    outcome: Literal["same_day", "continued", "started", "protected", "reset", "ignored"]
    current_streak: int
    longest_streak: int
    protection_used: str | None = None
    milestone: MilestoneOut | None = None
