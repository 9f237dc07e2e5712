"""
Side-table cache for `resolve_effective_set` results.

Key layout:

* `rbac:effective:generation` is bumped by catalogue and enablement changes,
  which affect every user.
* `rbac:effective:version:{user_id}:{workspace_id}` is bumped by a
  workspace-wide write (a grant or assignment with no company).
* `rbac:effective:version:{user_id}:{workspace_id}:{company_id}` is bumped by a
  write narrowed to one company.
* `rbac:effective:{generation}:{ws_version}:{co_version}:{user_id}:{workspace_id}:{company_id|-}`
  holds `{"items": [...], "valid_until": iso|null}` for one (user, workspace,
  company); `valid_until` is the earliest expiry among the grants behind it.

Invalidation never deletes entries, it moves the counters. A reader takes a
`CacheSlot` (the stamped key) *before* touching the database; if a mutation
commits while the reader is still computing, the reader's write lands on a key
nobody will look up again, so a pre-mutation result can never be served after
the mutation. Stale keys simply age out via TTL.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from scoped_rbac.logging_config import logger
from scoped_rbac.redis_client import redis_get_json, redis_set_json
from scoped_rbac.settings import settings

if TYPE_CHECKING:  # pragma: no cover - typing hint only
    from redis import Redis
else:
    Redis = Any

EFFECTIVE_SET_KEY_TEMPLATE = (
    "rbac:effective:{generation}:{ws_version}:{co_version}:{user_id}:{workspace_id}:{company_id}"
)
WORKSPACE_VERSION_KEY_TEMPLATE = "rbac:effective:version:{user_id}:{workspace_id}"
COMPANY_VERSION_KEY_TEMPLATE = "rbac:effective:version:{user_id}:{workspace_id}:{company_id}"
GENERATION_KEY = "rbac:effective:generation"

_NO_COMPANY = "-"


@dataclass(frozen=True, slots=True)
class CacheSlot:
    """A cache key stamped with the counters that were current when it was taken."""

    key: str
    counter_keys: tuple[str, ...]
    counters: tuple[str, ...]


def _counter(raw: Any) -> str:
    return str(raw) if raw is not None else "0"


class ResolutionCache:
    def __init__(
        self,
        redis: Redis,
        *,
        ttl_seconds: int | None = None,
        enabled: bool | None = None,
    ) -> None:
        self.redis = redis
        self.ttl_seconds = ttl_seconds or settings.effective_cache_ttl_seconds
        self.enabled = settings.effective_cache_enabled if enabled is None else enabled

    @property
    def _counter_ttl(self) -> int:
        # 版本号必须比它所保护的任何缓存条目活得更久
        return self.ttl_seconds * 2

    @staticmethod
    def _workspace_version_key(user_id: UUID, workspace_id: UUID) -> str:
        return WORKSPACE_VERSION_KEY_TEMPLATE.format(user_id=user_id, workspace_id=workspace_id)

    @staticmethod
    def _company_version_key(user_id: UUID, workspace_id: UUID, company_id: UUID | None) -> str:
        return COMPANY_VERSION_KEY_TEMPLATE.format(
            user_id=user_id,
            workspace_id=workspace_id,
            company_id=company_id if company_id is not None else _NO_COMPANY,
        )

    def _read_counters(self, counter_keys: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(_counter(raw) for raw in self.redis.mget(list(counter_keys)))

    def open_slot(
        self, user_id: UUID, workspace_id: UUID, company_id: UUID | None
    ) -> CacheSlot | None:
        """Stamp the key for a tuple; None when the cache is off or unreachable."""
        if not self.enabled:
            return None
        counter_keys = (
            GENERATION_KEY,
            self._workspace_version_key(user_id, workspace_id),
            self._company_version_key(user_id, workspace_id, company_id),
        )
        try:
            counters = self._read_counters(counter_keys)
        except Exception:
            logger.warning(
                "rbac cache: version read failed (user_id=%s workspace_id=%s company_id=%s)",
                user_id,
                workspace_id,
                company_id,
                exc_info=True,
            )
            return None
        generation, ws_version, co_version = counters
        key = EFFECTIVE_SET_KEY_TEMPLATE.format(
            generation=generation,
            ws_version=ws_version,
            co_version=co_version,
            user_id=user_id,
            workspace_id=workspace_id,
            company_id=company_id if company_id is not None else _NO_COMPANY,
        )
        return CacheSlot(key=key, counter_keys=counter_keys, counters=counters)

    def read(
        self, slot: CacheSlot, *, now: datetime | None = None
    ) -> list[dict[str, Any]] | None:
        """Cached items for the slot, or None on a miss or once `valid_until` has passed."""
        try:
            data = redis_get_json(self.redis, slot.key)
        except Exception:
            # 读缓存失败按未命中处理，回源数据库
            logger.warning("rbac cache: read failed for %s", slot.key, exc_info=True)
            return None
        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            return None
        valid_until = data.get("valid_until")
        if valid_until is not None:
            try:
                expired = datetime.fromisoformat(valid_until) <= (now or datetime.now(UTC))
            except (TypeError, ValueError):
                return None
            if expired:
                return None
        return data["items"]

    def write(
        self,
        slot: CacheSlot,
        items: list[Any],
        *,
        valid_until: datetime | None = None,
        now: datetime | None = None,
    ) -> bool:
        """
        Store a computed result under the slot it was computed for.

        `valid_until` is the earliest expiry among the grants behind the result;
        the entry never outlives it, and less than a second left skips caching.
        The write is dropped when any counter moved since the slot was opened.
        Returns whether the entry was stored.
        """
        ttl = self.ttl_seconds
        if valid_until is not None:
            remaining = (valid_until - (now or datetime.now(UTC))).total_seconds()
            ttl = min(ttl, int(remaining))
        if ttl < 1:
            logger.debug("rbac cache: not caching %s, a grant expires within a second", slot.key)
            return False
        payload = {
            "items": items,
            "valid_until": valid_until.isoformat() if valid_until is not None else None,
        }
        try:
            if self._read_counters(slot.counter_keys) != slot.counters:
                logger.debug("rbac cache: dropped write for %s, invalidated meanwhile", slot.key)
                return False
            redis_set_json(self.redis, slot.key, payload, ttl_seconds=ttl)
            for counter_key in slot.counter_keys[1:]:
                self.redis.expire(counter_key, self._counter_ttl)
        except Exception:
            logger.warning("rbac cache: write failed for %s", slot.key, exc_info=True)
            return False
        return True

    def get_effective_set(
        self,
        user_id: UUID,
        workspace_id: UUID,
        company_id: UUID | None,
        *,
        now: datetime | None = None,
    ) -> list[dict[str, Any]] | None:
        slot = self.open_slot(user_id, workspace_id, company_id)
        if slot is None:
            return None
        return self.read(slot, now=now)

    def set_effective_set(
        self,
        user_id: UUID,
        workspace_id: UUID,
        company_id: UUID | None,
        items: list[Any],
        *,
        valid_until: datetime | None = None,
        now: datetime | None = None,
    ) -> bool:
        slot = self.open_slot(user_id, workspace_id, company_id)
        if slot is None:
            return False
        return self.write(slot, items, valid_until=valid_until, now=now)

    def _bump(self, counter_key: str) -> int:
        version = self.redis.incr(counter_key)
        self.redis.expire(counter_key, self._counter_ttl)
        return version

    def invalidate(
        self,
        user_id: UUID,
        workspace_id: UUID,
        company_id: UUID | None = None,
    ) -> None:
        """
        Retire cached results for a tuple.

        `company_id=None` means the write applied workspace-wide, so every
        company of that workspace is retired for the user.
        """
        if company_id is not None:
            version = self._bump(self._company_version_key(user_id, workspace_id, company_id))
        else:
            version = self._bump(self._workspace_version_key(user_id, workspace_id))
        logger.debug(
            "rbac cache: invalidated user=%s workspace=%s company=%s (version %s)",
            user_id,
            workspace_id,
            company_id,
            version,
        )

    def invalidate_all(self) -> None:
        """Catalogue/enablement changed: every cached resolution is stale."""
        generation = self.redis.incr(GENERATION_KEY)
        logger.info("rbac cache: bumped generation to %s", generation)


__all__ = [
    "COMPANY_VERSION_KEY_TEMPLATE",
    "EFFECTIVE_SET_KEY_TEMPLATE",
    "GENERATION_KEY",
    "WORKSPACE_VERSION_KEY_TEMPLATE",
    "CacheSlot",
    "ResolutionCache",
]
