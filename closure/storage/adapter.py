"""
Typed read-modify-write wrapper over a KeyValueStore.

Store layout (schema version 2):

    schema_version: int
    config:    {groupThreshold, idleThresholdHours, whitelist, ...}
    archived:  [{url, title, favicon, timestamp, summary, summaryType, domain}]
    swept:     [{url, title, timestamp, reason}]
    stats:     {tabsTidiedThisWeek, ramSavedEstimate}
    archiving: {"<tabId>": {url, startedAt}}       in-progress markers
    reprieve:  {pending: {"<tabId>": ts}, kept: {"<tabId>": ts}}

The store has no compare-and-swap. Every read-modify-write here runs under one
asyncio.Lock owned by the adapter; the lock is held only across store calls,
never across tab-provider or AI calls.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from closure.config import MINUTES_PER_DAY, RAM_PER_TAB_MB, SCHEMA_VERSION
from closure.observability.logging import get_logger
from closure.observability.telemetry import counter, log_event
from closure.storage.kv import KeyValueStore
from closure.tabs.models import ArchivedEntry, Stats, SummaryType, SweptEntry, UserConfig

logger = get_logger(__name__)

CLEARABLE_CATEGORIES = frozenset({"archived", "swept", "stats"})


@dataclass
class ReprieveState:
    """Pending reprieve notifications and keep decisions, keyed by tab id."""

    pending: dict[int, int] = field(default_factory=dict)
    kept: dict[int, int] = field(default_factory=dict)

    @classmethod
    def from_store(cls, raw: Any) -> ReprieveState:
        if not isinstance(raw, dict):
            return cls()
        return cls(pending=_int_map(raw.get("pending")), kept=_int_map(raw.get("kept")))

    def to_store(self) -> dict[str, dict[str, int]]:
        return {
            "pending": {str(k): v for k, v in self.pending.items()},
            "kept": {str(k): v for k, v in self.kept.items()},
        }


def _int_map(raw: Any) -> dict[int, int]:
    if not isinstance(raw, dict):
        return {}
    result: dict[int, int] = {}
    for key, value in raw.items():
        try:
            result[int(key)] = int(value)
        except (TypeError, ValueError):
            continue
    return result


def _default_record() -> dict[str, Any]:
    return {
        "schema_version": SCHEMA_VERSION,
        "config": UserConfig().to_store(),
        "archived": [],
        "swept": [],
        "stats": Stats().to_store(),
        "archiving": {},
        "reprieve": ReprieveState().to_store(),
    }


def _migrate_1_to_2(record: dict[str, Any]) -> dict[str, Any]:
    """Backfill config keys added in v2 and the in-progress marker map."""
    config = record.get("config") if isinstance(record.get("config"), dict) else {}
    record["config"] = {**UserConfig().to_store(), **config}
    record.setdefault("archiving", {})
    record.setdefault("reprieve", ReprieveState().to_store())
    return record


MIGRATIONS = {
    1: _migrate_1_to_2,
}


class StoreAdapter:
    """Typed access to the persisted orchestrator state."""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self._lock = asyncio.Lock()

    # --- Schema ---

    async def ensure_schema(self) -> int:
        """
        Install defaults for missing pieces and migrate forward.

        Called once at process start. Returns the schema version now stored.
        """
        async with self._lock:
            record = await self.store.get()
            defaults = _default_record()
            updates: dict[str, Any] = {}

            version = record.get("schema_version")
            if not isinstance(version, int) or version < 1:
                # Pre-versioned or wiped store: treat what is there as v1.
                version = 1 if record else SCHEMA_VERSION
                updates["schema_version"] = version

            while version < SCHEMA_VERSION:
                migrate = MIGRATIONS.get(version)
                if migrate is None:
                    logger.warning("No migration from schema v%d; reinitializing", version)
                    break
                record = migrate(dict(record))
                version += 1
                updates.update({k: record[k] for k in ("config", "archiving", "reprieve")})
                log_event("store.migrated", to_version=version)
            final_version = max(version, SCHEMA_VERSION)
            updates["schema_version"] = final_version

            for key, default in defaults.items():
                if key == "schema_version":
                    continue
                current = updates.get(key, record.get(key))
                if not isinstance(current, type(default)):
                    counter("store.default_installed")
                    logger.info("Installing default store value for %s", key)
                    updates[key] = default

            if updates.get("schema_version") != record.get("schema_version") or len(updates) > 1:
                await self.store.set(updates)
            return final_version

    # --- Config ---

    async def get_config(self) -> UserConfig:
        data = await self.store.get(["config"])
        raw = data.get("config")
        if not isinstance(raw, dict):
            return UserConfig()
        try:
            return UserConfig.model_validate(raw)
        except ValidationError as e:
            counter("store.config_invalid")
            logger.warning("Stored config invalid, using defaults: %s", e.error_count())
            return UserConfig()

    async def save_config(self, config: UserConfig | dict[str, Any]) -> UserConfig:
        """Merge a full or partial config into the stored one."""
        async with self._lock:
            data = await self.store.get(["config"])
            current = data.get("config") if isinstance(data.get("config"), dict) else {}
            patch = config.to_store() if isinstance(config, UserConfig) else dict(config)
            merged = UserConfig.model_validate({**current, **patch})
            await self.store.set({"config": merged.to_store()})
            return merged

    # --- Reads ---

    async def get_archived(self) -> list[ArchivedEntry]:
        data = await self.store.get(["archived"])
        return self._parse_entries(data.get("archived"), ArchivedEntry, "archived")

    async def get_swept(self) -> list[SweptEntry]:
        data = await self.store.get(["swept"])
        return self._parse_entries(data.get("swept"), SweptEntry, "swept")

    async def get_stats(self) -> Stats:
        data = await self.store.get(["stats"])
        raw = data.get("stats")
        if not isinstance(raw, dict):
            return Stats()
        try:
            return Stats.model_validate(raw)
        except ValidationError:
            counter("store.stats_invalid")
            return Stats()

    @staticmethod
    def _parse_entries(raw: Any, model: type, label: str) -> list:
        if not isinstance(raw, list):
            return []
        entries = []
        for item in raw:
            try:
                entries.append(model.model_validate(item))
            except ValidationError:
                counter(f"store.{label}_entry_invalid")
        return entries

    # --- Appends (read, modify in memory, write back whole value) ---

    async def append_archived(self, entry: ArchivedEntry) -> None:
        async with self._lock:
            archived = await self._read_list("archived")
            archived.append(entry.to_store())
            await self.store.set({"archived": archived})

    async def increment_stats(self, tabs: int = 1, ram_per_tab_mb: int = RAM_PER_TAB_MB) -> Stats:
        async with self._lock:
            stats = self._bumped(await self._read_stats(), tabs, ram_per_tab_mb)
            await self.store.set({"stats": stats.to_store()})
            return stats

    async def record_archival(self, entry: ArchivedEntry) -> Stats:
        """Append an archived entry and bump stats in a single store write."""
        async with self._lock:
            data = await self.store.get(["archived", "stats"])
            archived = data.get("archived") if isinstance(data.get("archived"), list) else []
            archived.append(entry.to_store())
            stats = self._bumped(self._stats_from(data.get("stats")), 1, RAM_PER_TAB_MB)
            await self.store.set({"archived": archived, "stats": stats.to_store()})
            return stats

    async def record_sweep(self, entry: SweptEntry) -> Stats:
        """Append a swept entry and bump stats in a single store write."""
        async with self._lock:
            data = await self.store.get(["swept", "stats"])
            swept = data.get("swept") if isinstance(data.get("swept"), list) else []
            swept.append(entry.to_store())
            stats = self._bumped(self._stats_from(data.get("stats")), 1, RAM_PER_TAB_MB)
            await self.store.set({"swept": swept, "stats": stats.to_store()})
            return stats

    async def _read_list(self, key: str) -> list[Any]:
        data = await self.store.get([key])
        value = data.get(key)
        return value if isinstance(value, list) else []

    async def _read_stats(self) -> Stats:
        data = await self.store.get(["stats"])
        return self._stats_from(data.get("stats"))

    @staticmethod
    def _stats_from(raw: Any) -> Stats:
        if not isinstance(raw, dict):
            return Stats()
        try:
            return Stats.model_validate(raw)
        except ValidationError:
            return Stats()

    @staticmethod
    def _bumped(stats: Stats, tabs: int, ram_per_tab_mb: int) -> Stats:
        return Stats(
            tabs_tidied_this_week=stats.tabs_tidied_this_week + tabs,
            ram_saved_estimate=stats.ram_saved_estimate + tabs * ram_per_tab_mb,
        )

    # --- Archived entry maintenance ---

    async def update_archived_summary(
        self, timestamp: int, summary: str, summary_type: SummaryType | str
    ) -> bool:
        """Replace the summary of the entry with this timestamp. Returns False if absent."""
        async with self._lock:
            archived = await self._read_list("archived")
            for item in archived:
                if isinstance(item, dict) and item.get("timestamp") == timestamp:
                    item["summary"] = summary
                    item["summaryType"] = SummaryType(summary_type).value
                    await self.store.set({"archived": archived})
                    return True
            return False

    async def prune_archived(self, retention_days: int, now: int) -> int:
        """Drop archived entries older than retention_days. 0 keeps everything."""
        if retention_days <= 0:
            return 0
        cutoff = now - int(retention_days * MINUTES_PER_DAY * 60 * 1000)
        async with self._lock:
            archived = await self._read_list("archived")
            kept = [
                item
                for item in archived
                if isinstance(item, dict) and int(item.get("timestamp") or 0) >= cutoff
            ]
            pruned = len(archived) - len(kept)
            if pruned:
                await self.store.set({"archived": kept})
                counter("store.archived_pruned", pruned)
                log_event("store.archived_pruned", count=pruned, retention_days=retention_days)
            return pruned

    # --- Resets ---

    async def reset_stats(self) -> Stats:
        async with self._lock:
            stats = Stats()
            await self.store.set({"stats": stats.to_store()})
            log_event("store.stats_reset")
            return stats

    async def clear(self, categories: Iterable[str]) -> list[str]:
        """Clear the named data categories (archived, swept, stats). Unknown names are ignored."""
        requested = [c for c in categories if c in CLEARABLE_CATEGORIES]
        if not requested:
            return []
        defaults = _default_record()
        async with self._lock:
            await self.store.set({c: defaults[c] for c in requested})
        log_event("store.cleared", categories=",".join(sorted(requested)))
        return requested

    # --- In-progress markers ---

    async def mark_archiving(self, tab_id: int, url: str, started_at: int) -> None:
        async with self._lock:
            markers = await self._read_map("archiving")
            markers[str(tab_id)] = {"url": url, "startedAt": started_at}
            await self.store.set({"archiving": markers})

    async def clear_archiving(self, tab_id: int) -> None:
        async with self._lock:
            markers = await self._read_map("archiving")
            if markers.pop(str(tab_id), None) is not None:
                await self.store.set({"archiving": markers})

    async def get_archiving(self) -> dict[int, dict[str, Any]]:
        markers = await self._read_map("archiving")
        result: dict[int, dict[str, Any]] = {}
        for key, value in markers.items():
            try:
                tab_id = int(key)
            except ValueError:
                continue
            if isinstance(value, dict):
                result[tab_id] = value
        return result

    async def _read_map(self, key: str) -> dict[str, Any]:
        data = await self.store.get([key])
        value = data.get(key)
        return value if isinstance(value, dict) else {}

    # --- Reprieve ledger ---

    async def get_reprieve_state(self) -> ReprieveState:
        data = await self.store.get(["reprieve"])
        return ReprieveState.from_store(data.get("reprieve"))

    async def mark_reprieve_pending(self, tab_id: int, notified_at: int) -> None:
        async with self._lock:
            state = await self._read_reprieve()
            state.pending[tab_id] = notified_at
            await self.store.set({"reprieve": state.to_store()})

    async def resolve_reprieve(self, tab_id: int, kept_at: int | None = None) -> bool:
        """
        Close out a pending reprieve. With kept_at, also records a keep
        decision so idle age restarts from that moment.

        Returns True when a reprieve was pending.
        """
        async with self._lock:
            state = await self._read_reprieve()
            was_pending = state.pending.pop(tab_id, None) is not None
            if kept_at is not None:
                state.kept[tab_id] = kept_at
            await self.store.set({"reprieve": state.to_store()})
            return was_pending

    async def forget_tabs(self, tab_ids: Iterable[int]) -> None:
        """Drop reprieve bookkeeping for tabs that are archived or gone."""
        ids = set(tab_ids)
        if not ids:
            return
        async with self._lock:
            state = await self._read_reprieve()
            changed = False
            for tab_id in ids:
                changed |= state.pending.pop(tab_id, None) is not None
                changed |= state.kept.pop(tab_id, None) is not None
            if changed:
                await self.store.set({"reprieve": state.to_store()})

    async def _read_reprieve(self) -> ReprieveState:
        data = await self.store.get(["reprieve"])
        return ReprieveState.from_store(data.get("reprieve"))
