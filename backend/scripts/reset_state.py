"""
Show, and optionally reset, a user's reward engine snapshots.

Resetting writes zeroed combo, boost and streak snapshots, the same as an
in-app "reset progress". Safe to run multiple times (idempotent).

Usage:
    cd backend
    SUPABASE_URL=... SUPABASE_SERVICE_KEY=... python scripts/reset_state.py <user_id> [--dry-run]
"""
import os
import sys

# Add project root to path so we can import engine modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import get_config
from app.db import get_gateway
from app.session import EngineSession


def describe(session: EngineSession) -> None:
    now = session.now()
    combo = session.get_combo_state()
    boosts = session.get_boost_state()
    streak = session.get_streak_state()

    print("  Combo:")
    print(f"    current_combo: {combo.current_combo}  (max {combo.max_combo})")
    print(f"    total_bonus_xp: {combo.total_bonus_xp}")
    print("  Boosts:")
    print(f"    active: {len(boosts.active_boosts)}  multiplier x{session.boosts.current_multiplier(now)}")
    print(f"    total_xp_boosted: {boosts.total_xp_boosted}")
    print(f"    boosts_activated_count: {boosts.boosts_activated_count}")
    print("  Streak:")
    print(f"    current_streak: {streak.current_streak}  (longest {streak.longest_streak})")
    print(f"    last_active_date: {streak.last_active_date or '-'}")
    print(f"    live protections: {len(session.streak.get_active_protections(now))}"
          f"  consumed: {streak.protections_consumed_count}")


def run(user_id: str, dry_run: bool = False):
    print(f"\n🔍 Reward engine state for user: {user_id[:8]}...\n")

    cfg = get_config()
    session = EngineSession(get_gateway(user_id, cfg.snapshot_backend), cfg)
    describe(session)

    if dry_run:
        print("\n  DRY RUN — no changes written.")
        return

    session.reset_everything()
    print(f"\n✅ State reset for {user_id[:8]}!\n")


if __name__ == "__main__":
    args = [a for a in sys.argv[1:] if a != "--dry-run"]
    dry = "--dry-run" in sys.argv

    if not args:
        print("Usage: python scripts/reset_state.py <user_id> [--dry-run]")
        sys.exit(1)

    run(args[0], dry_run=dry)
