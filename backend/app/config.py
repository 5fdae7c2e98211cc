"""
Engine configuration from environment variables.
"""
import os
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache


@dataclass(frozen=True)
class EngineConfig:
    combo_timeout: timedelta = timedelta(seconds=30)
    combo_max_multiplier: float = 5.0
    combo_base_unit: int = 10
    combo_risk_window: timedelta = timedelta(seconds=10)
    boost_max_combined_multiplier: float = 25.0   # 0 disables the ceiling
    streak_risk_hour: int = 18
    snapshot_backend: str = "supabase"            # 'supabase' | 'memory'


def _number(name: str, default: float, cast=float):
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def config_from_env() -> EngineConfig:
    cfg = EngineConfig(
        combo_timeout=timedelta(seconds=_number("COMBO_TIMEOUT_SECONDS", 30)),
        combo_max_multiplier=_number("COMBO_MAX_MULTIPLIER", 5.0),
        combo_base_unit=_number("COMBO_BASE_UNIT", 10, int),
        combo_risk_window=timedelta(seconds=_number("COMBO_RISK_SECONDS", 10)),
        boost_max_combined_multiplier=_number("BOOST_MAX_COMBINED_MULTIPLIER", 25.0),
        streak_risk_hour=_number("STREAK_RISK_HOUR", 18, int),
        snapshot_backend=os.environ.get("SNAPSHOT_BACKEND", "supabase"),
    )
    if cfg.combo_timeout <= timedelta(0):
        raise ValueError("COMBO_TIMEOUT_SECONDS must be positive")
    if cfg.combo_max_multiplier < 1:
        raise ValueError("COMBO_MAX_MULTIPLIER must be >= 1")
    if cfg.boost_max_combined_multiplier and cfg.boost_max_combined_multiplier < 1:
        raise ValueError("BOOST_MAX_COMBINED_MULTIPLIER must be >= 1 or 0")
    if not 0 <= cfg.streak_risk_hour <= 23:
        raise ValueError("STREAK_RISK_HOUR must be between 0 and 23")
    if cfg.snapshot_backend not in ("supabase", "memory"):
        raise ValueError("SNAPSHOT_BACKEND must be 'supabase' or 'memory'")
    return cfg


@lru_cache(maxsize=1)
def get_config() -> EngineConfig:
    return config_from_env()
