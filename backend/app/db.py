import os
import logging
from functools import lru_cache
from typing import Any, Protocol

from supabase import create_client, Client

from .engine.errors import PersistenceError

logger = logging.getLogger(__name__)

SNAPSHOT_TABLE = "engine_snapshots"

COMBO_KEY = "combo"
BOOSTS_KEY = "boosts"
STREAK_KEY = "streak"

# Backing dict for the "memory" backend; lives as long as the process.
MEMORY_STORE: dict[tuple[str, str], dict[str, Any]] = {}


@lru_cache(maxsize=1)
def get_client() -> Client:
    url = os.environ["SUPABASE_URL"]
    key = os.environ["SUPABASE_SERVICE_KEY"]
    return create_client(url, key)


class PersistenceGateway(Protocol):
    def load(self, key: str) -> dict[str, Any] | None: ...
    def save(self, key: str, snapshot: dict[str, Any]) -> None: ...


class SupabaseGateway:
    """One row per (user_id, key) in engine_snapshots; payload is a JSON column."""

    def __init__(self, db: Client, user_id: str):
        self.db = db
        self.user_id = user_id

    def load(self, key: str) -> dict[str, Any] | None:
        try:
            res = (
                self.db.table(SNAPSHOT_TABLE)
                .select("payload")
                .eq("user_id", self.user_id)
                .eq("key", key)
                .execute()
            )
        except Exception as e:
            logger.error("Snapshot read failed for user=%s key=%s: %s", self.user_id[:8], key, e)
            raise PersistenceError(f"could not load {key} snapshot") from e
        if not res.data:
            return None
        return res.data[0].get("payload")

    def save(self, key: str, snapshot: dict[str, Any]) -> None:
        try:
            self.db.table(SNAPSHOT_TABLE).upsert(
                {"user_id": self.user_id, "key": key, "payload": snapshot}
            ).execute()
        except Exception as e:
            logger.error("Snapshot write failed for user=%s key=%s: %s", self.user_id[:8], key, e)
            raise PersistenceError(f"could not save {key} snapshot") from e


class MemoryGateway:
    """Snapshots in a plain dict, for local runs and tests."""

    def __init__(self, user_id: str, store: dict[tuple[str, str], dict[str, Any]]):
        self.user_id = user_id
        self.store = store

    def load(self, key: str) -> dict[str, Any] | None:
        return self.store.get((self.user_id, key))

    def save(self, key: str, snapshot: dict[str, Any]) -> None:
        self.store[(self.user_id, key)] = snapshot


def get_gateway(user_id: str, backend: str = "supabase") -> PersistenceGateway:
    if backend == "memory":
        return MemoryGateway(user_id, MEMORY_STORE)
    return SupabaseGateway(get_client(), user_id)
