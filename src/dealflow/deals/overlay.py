"""Persistence overlay -- per-deal progress layered over the base catalog.

Stores one JSON object per deal id holding only the mutable progress fields.
Reads merge that object over the catalog entry; patches merge field by field
so sibling fields written earlier survive. ``brief`` and ``approval`` merge
one level deep.

Corrupted entries (bad JSON, not an object, wrongly typed fields) are
recovered silently: unusable parts are dropped and the nearest valid record
is returned. Nothing here raises on bad persisted data.

There is no locking. Each patch is a single store write, so a reader sees
either the old or the new entry, but two concurrent patches of the same
field are last-write-wins.
"""

from __future__ import annotations

import json
from typing import Any, Protocol

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from src.dealflow.deals.catalog import DealCatalog
from src.dealflow.deals.schemas import (
    IDENTITY_FIELDS,
    NESTED_FIELDS,
    DealBase,
    DealRecord,
)

logger = structlog.get_logger(__name__)

# Persisted keys an overlay entry may carry (progress fields only).
PROGRESS_FIELDS: frozenset[str] = (
    frozenset(to_camel(name) for name in DealRecord.model_fields) - IDENTITY_FIELDS
)


# ── Stores ──────────────────────────────────────────────────────────────────


class OverlayStore(Protocol):
    """Raw string storage for overlay entries, keyed by deal id."""

    async def get(self, deal_id: str) -> str | None: ...

    async def set(self, deal_id: str, value: str) -> None: ...

    async def delete(self, deal_id: str) -> None: ...


class InMemoryOverlayStore:
    """Dict-backed store. Used in tests and single-process development."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, deal_id: str) -> str | None:
        return self._data.get(deal_id)

    async def set(self, deal_id: str, value: str) -> None:
        self._data[deal_id] = value

    async def delete(self, deal_id: str) -> None:
        self._data.pop(deal_id, None)

    def __contains__(self, deal_id: object) -> bool:
        return deal_id in self._data


class RedisOverlayStore:
    """Redis hash store: one hash (``key``), one field per deal id.

    Args:
        redis_client: ``redis.asyncio`` client created with decode_responses=True.
        key: Hash name holding all overlay entries.
    """

    def __init__(self, redis_client: aioredis.Redis, key: str = "dealsOverlay") -> None:
        self._redis = redis_client
        self._key = key

    async def get(self, deal_id: str) -> str | None:
        return await self._redis.hget(self._key, deal_id)

    async def set(self, deal_id: str, value: str) -> None:
        await self._redis.hset(self._key, deal_id, value)

    async def delete(self, deal_id: str) -> None:
        await self._redis.hdel(self._key, deal_id)


# ── Merge ───────────────────────────────────────────────────────────────────


def merge_patch(current: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Merge ``patch`` over ``current`` without clobbering nested siblings.

    Top-level keys override. ``brief`` and ``approval`` merge one level deep;
    a non-object value for either is ignored in favour of the existing one.

    Args:
        current: Existing overlay entry (persisted shape).
        patch: Partial update (persisted shape).

    Returns:
        New merged entry; neither input is modified.
    """
    merged = {**current, **patch}
    for key in NESTED_FIELDS:
        if key not in current and key not in patch:
            continue
        existing = current.get(key)
        incoming = patch.get(key)
        merged[key] = {
            **(existing if isinstance(existing, dict) else {}),
            **(incoming if isinstance(incoming, dict) else {}),
        }
    return merged


# ── Overlay ─────────────────────────────────────────────────────────────────


class PersistenceOverlay:
    """Read, patch and remove per-deal progress over an injected store.

    Args:
        store: OverlayStore holding JSON entries.
        catalog: DealCatalog supplying base records.
    """

    def __init__(self, store: OverlayStore, catalog: DealCatalog) -> None:
        self._store = store
        self._catalog = catalog

    @property
    def catalog(self) -> DealCatalog:
        return self._catalog

    async def read(self, deal_id: str) -> DealRecord:
        """Return the base record merged with the deal's overlay entry."""
        entry = await self._load_entry(deal_id)
        return _compose(self._catalog.get(deal_id), entry, deal_id)

    async def patch(self, deal_id: str, partial: dict[str, Any]) -> DealRecord:
        """Merge ``partial`` into the deal's entry, write it, return the record.

        Identity and unknown keys in ``partial`` are dropped.
        """
        clean = _sanitize_entry(partial, deal_id, source="patch")
        current = await self._load_entry(deal_id)
        merged = merge_patch(current, clean)
        await self._store.set(deal_id, json.dumps(merged, ensure_ascii=False))
        logger.info("overlay.patched", deal_id=deal_id, fields=sorted(clean))
        return _compose(self._catalog.get(deal_id), merged, deal_id)

    async def remove(self, deal_id: str) -> DealRecord:
        """Delete the deal's entry and return the pristine base record."""
        await self._store.delete(deal_id)
        logger.info("overlay.removed", deal_id=deal_id)
        return _compose(self._catalog.get(deal_id), {}, deal_id)

    async def _load_entry(self, deal_id: str) -> dict[str, Any]:
        raw = await self._store.get(deal_id)
        if raw is None:
            return {}
        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            logger.warning("overlay.corrupted_entry", deal_id=deal_id, reason="invalid_json")
            return {}
        if not isinstance(data, dict):
            logger.warning(
                "overlay.corrupted_entry",
                deal_id=deal_id,
                reason="not_an_object",
                type=type(data).__name__,
            )
            return {}
        return _sanitize_entry(data, deal_id, source="store")


# ── Helpers ─────────────────────────────────────────────────────────────────


def _sanitize_entry(data: dict[str, Any], deal_id: str, source: str) -> dict[str, Any]:
    """Keep only progress keys; identity fields come from the catalog."""
    dropped = [key for key in data if key not in PROGRESS_FIELDS]
    if dropped:
        logger.warning(
            "overlay.keys_dropped",
            deal_id=deal_id,
            source=source,
            keys=sorted(dropped),
        )
    return {key: value for key, value in data.items() if key in PROGRESS_FIELDS}


def _compose(base: DealBase, entry: dict[str, Any], deal_id: str) -> DealRecord:
    """Validate base + entry into a DealRecord, dropping invalid parts.

    Each failing field (or nested sub-field of ``brief``/``approval``) is
    removed and validation retried. If the record still does not validate,
    the unmodified base is returned.
    """
    data: dict[str, Any] = {**base.model_dump(by_alias=True), **entry}
    for key in NESTED_FIELDS:
        if key in data and isinstance(data[key], dict):
            data[key] = dict(data[key])

    for _ in range(len(PROGRESS_FIELDS) + 1):
        try:
            return DealRecord.model_validate(data)
        except ValidationError as exc:
            removed = _drop_invalid(data, exc)
            logger.warning(
                "overlay.invalid_fields_dropped",
                deal_id=deal_id,
                fields=removed,
            )
            if not removed:
                break

    logger.warning("overlay.fallback_to_base", deal_id=deal_id)
    return DealRecord.model_validate(base.model_dump(by_alias=True))


def _drop_invalid(data: dict[str, Any], exc: ValidationError) -> list[str]:
    removed: list[str] = []
    for error in exc.errors():
        loc = error.get("loc") or ()
        if not loc:
            continue
        top = str(loc[0])
        if top in IDENTITY_FIELDS:
            continue
        if len(loc) >= 2 and top in NESTED_FIELDS and isinstance(data.get(top), dict):
            sub = str(loc[1])
            if sub in data[top]:
                del data[top][sub]
                removed.append(f"{top}.{sub}")
            continue
        if top in data:
            del data[top]
            removed.append(top)
    return removed
