"""Derived-view cache for dashboard projections.

Workflow and payment mutations call `invalidate_after_write` after their
ledger writes: the projections are dropped immediately and once more when
the session commits, so a reader that rebuilt a projection from
pre-commit rows in between does not keep it. Invalidation is best-effort:
a failure is logged and counted, never raised to the mutating caller.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from licensing_engine.metrics import metrics

logger = logging.getLogger(__name__)

GROUP_COUNTS_KEY = "group_counts"

# session.info key holding invalidations to repeat after commit
PENDING_INVALIDATIONS = "pending_view_invalidations"


@runtime_checkable
class DerivedViewCache(Protocol):
    """Cache of read-side projections keyed by name."""

    def get(self, key: str) -> Any | None:
        """Return a cached value or None."""
        ...

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value."""
        ...

    def invalidate_applicant(
        self,
        applicant_id: int,
        *,
        include_fees: bool = False,
        include_submitted: bool = False,
    ) -> None:
        """Drop every projection that may include this applicant."""
        ...


class InMemoryViewCache:
    """Process-local TTL cache.

    Per-applicant keys are prefixed `applicant:<id>:`; aggregate projections
    (group counts) are dropped on every invalidation since any applicant
    change can move a count.
    """

    def __init__(self, default_ttl: float = 60.0) -> None:
        self.default_ttl = default_ttl
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at < time.monotonic():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        expires_at = time.monotonic() + (self.default_ttl if ttl is None else ttl)
        with self._lock:
            self._entries[key] = (expires_at, value)

    def invalidate_applicant(
        self,
        applicant_id: int,
        *,
        include_fees: bool = False,
        include_submitted: bool = False,
    ) -> None:
        prefix = f"applicant:{applicant_id}:"
        with self._lock:
            stale = [k for k in self._entries if k.startswith(prefix)]
            stale.append(GROUP_COUNTS_KEY)
            if include_fees:
                stale.append("payment_summary")
            if include_submitted:
                stale.append("submitted")
            for key in stale:
                self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def invalidate_quietly(
    cache: DerivedViewCache | None,
    applicant_id: int,
    *,
    include_fees: bool = False,
    include_submitted: bool = False,
) -> None:
    """Invalidate, logging instead of raising on failure."""
    if cache is None:
        return
    try:
        cache.invalidate_applicant(
            applicant_id,
            include_fees=include_fees,
            include_submitted=include_submitted,
        )
    except Exception:
        logger.exception("Cache invalidation failed for applicant %s", applicant_id)
        metrics.increment("side_effect_failures_total", operation="cache_invalidation")


def invalidate_after_write(
    session: AsyncSession,
    cache: DerivedViewCache | None,
    applicant_id: int,
    *,
    include_fees: bool = False,
    include_submitted: bool = False,
) -> None:
    """Invalidate now and again after `session` commits."""
    if cache is None:
        return
    invalidate_quietly(
        cache, applicant_id, include_fees=include_fees, include_submitted=include_submitted
    )
    pending = session.info.setdefault(PENDING_INVALIDATIONS, [])
    pending.append((cache, applicant_id, include_fees, include_submitted))


def _invalidate_committed(session: Session) -> None:
    for cache, applicant_id, include_fees, include_submitted in session.info.pop(
        PENDING_INVALIDATIONS, []
    ):
        invalidate_quietly(
            cache, applicant_id, include_fees=include_fees, include_submitted=include_submitted
        )


event.listen(Session, "after_commit", _invalidate_committed)
