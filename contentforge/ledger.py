"""
Usage & quota ledger for contentforge.

Tracks per-user, per-feature consumption within a monthly period and
enforces plan limits. Reservation is a single atomic check-and-increment,
so concurrent reservations can never push `used` past `limit`.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, UTC
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from contentforge.config import OrchestratorConfig
from contentforge.schemas import PlanTier, QuotaState


logger = logging.getLogger(__name__)


def month_period_key(now: datetime) -> str:
    """Calendar month key in UTC, e.g. '2026-10'."""
    if now.tzinfo is not None:
        now = now.astimezone(UTC)
    return now.strftime("%Y-%m")


class QuotaStore(Protocol):
    """Quota storage backend interface."""

    def reserve(
        self,
        user_id: str,
        feature: str,
        period_key: str,
        cost: int,
        limit: Optional[int],
    ) -> Tuple[bool, int]:
        """Atomically add `cost` if it fits under `limit`. Returns (granted, used)."""
        ...

    def release(self, user_id: str, feature: str, period_key: str, cost: int) -> int:
        """Subtract `cost`, clamped at zero. Returns the new `used`."""
        ...

    def get_used(self, user_id: str, feature: str, period_key: str) -> int:
        ...

    def list_usage(self, user_id: str, period_key: str) -> Dict[str, int]:
        ...


class InMemoryQuotaStore:
    """In-memory quota store (default)."""

    def __init__(self):
        self._used: Dict[Tuple[str, str, str], int] = {}
        self._lock = threading.Lock()

    def reserve(
        self,
        user_id: str,
        feature: str,
        period_key: str,
        cost: int,
        limit: Optional[int],
    ) -> Tuple[bool, int]:
        key = (user_id, feature, period_key)
        with self._lock:
            used = self._used.get(key, 0)
            if limit is not None and used + cost > limit:
                return False, used
            self._used[key] = used + cost
            return True, used + cost

    def release(self, user_id: str, feature: str, period_key: str, cost: int) -> int:
        key = (user_id, feature, period_key)
        with self._lock:
            used = max(0, self._used.get(key, 0) - cost)
            self._used[key] = used
            return used

    def get_used(self, user_id: str, feature: str, period_key: str) -> int:
        with self._lock:
            return self._used.get((user_id, feature, period_key), 0)

    def list_usage(self, user_id: str, period_key: str) -> Dict[str, int]:
        with self._lock:
            return {
                feature: used
                for (uid, feature, period), used in self._used.items()
                if uid == user_id and period == period_key
            }


class SQLiteQuotaStore:
    """SQLite-backed quota store."""

    def __init__(self, db_path: str = "contentforge.db"):
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS quota_usage (
                user_id TEXT NOT NULL,
                feature TEXT NOT NULL,
                period_key TEXT NOT NULL,
                used INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (user_id, feature, period_key)
            )
            """
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_quota_user ON quota_usage(user_id, period_key)")
        self._conn.commit()

    def reserve(
        self,
        user_id: str,
        feature: str,
        period_key: str,
        cost: int,
        limit: Optional[int],
    ) -> Tuple[bool, int]:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO quota_usage (user_id, feature, period_key, used)
                VALUES (?, ?, ?, 0)
                ON CONFLICT(user_id, feature, period_key) DO NOTHING
                """,
                (user_id, feature, period_key),
            )
            if limit is None:
                cur = self._conn.execute(
                    """
                    UPDATE quota_usage SET used = used + ?
                    WHERE user_id = ? AND feature = ? AND period_key = ?
                    """,
                    (cost, user_id, feature, period_key),
                )
            else:
                cur = self._conn.execute(
                    """
                    UPDATE quota_usage SET used = used + ?
                    WHERE user_id = ? AND feature = ? AND period_key = ? AND used + ? <= ?
                    """,
                    (cost, user_id, feature, period_key, cost, limit),
                )
            self._conn.commit()
            granted = cur.rowcount > 0
            return granted, self._get_used(user_id, feature, period_key)

    def release(self, user_id: str, feature: str, period_key: str, cost: int) -> int:
        with self._lock:
            self._conn.execute(
                """
                UPDATE quota_usage SET used = MAX(0, used - ?)
                WHERE user_id = ? AND feature = ? AND period_key = ?
                """,
                (cost, user_id, feature, period_key),
            )
            self._conn.commit()
            return self._get_used(user_id, feature, period_key)

    def get_used(self, user_id: str, feature: str, period_key: str) -> int:
        with self._lock:
            return self._get_used(user_id, feature, period_key)

    def _get_used(self, user_id: str, feature: str, period_key: str) -> int:
        row = self._conn.execute(
            "SELECT used FROM quota_usage WHERE user_id = ? AND feature = ? AND period_key = ?",
            (user_id, feature, period_key),
        ).fetchone()
        return int(row["used"]) if row else 0

    def list_usage(self, user_id: str, period_key: str) -> Dict[str, int]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT feature, used FROM quota_usage WHERE user_id = ? AND period_key = ?",
                (user_id, period_key),
            ).fetchall()
        return {row["feature"]: int(row["used"]) for row in rows}

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class UsageLedger:
    """
    Per-user, per-feature, per-month quota accounting.

    Example:
        ```python
        ledger = UsageLedger()

        granted, remaining = ledger.check_and_reserve(
            "user_123", "image-generation", plan=PlanTier.FREE
        )
        if granted:
            try:
                call_provider()
            except ProviderError:
                ledger.release("user_123", "image-generation")
                raise
        ```
    """

    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        store: Optional[QuotaStore] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.config = config if config is not None else OrchestratorConfig()
        self.store = store if store is not None else InMemoryQuotaStore()
        self._clock = clock

    def current_period(self) -> str:
        return month_period_key(self._clock())

    def check_and_reserve(
        self,
        user_id: str,
        feature: str,
        cost: int = 1,
        plan: PlanTier = PlanTier.FREE,
        period_key: Optional[str] = None,
    ) -> Tuple[bool, int]:
        """
        Atomically reserve `cost` units of a feature for a user.

        Args:
            user_id: The requesting user.
            feature: Feature name, e.g. 'video-generation'.
            cost: Units to reserve.
            plan: The user's plan tier.
            period_key: Period to charge. Defaults to the current month.

        Returns:
            (granted, remaining). `remaining` is -1 for unlimited plans.

        Raises:
            KeyError: If no quota is configured for the plan/feature.
        """
        limit = self.config.quota_limit(plan, feature)
        period_key = period_key or self.current_period()
        granted, used = self.store.reserve(user_id, feature, period_key, cost, limit)

        if not granted:
            logger.info(
                "Quota denied: user=%s feature=%s period=%s used=%d limit=%s",
                user_id, feature, period_key, used, limit,
            )
        remaining = -1 if limit is None else max(0, limit - used)
        return granted, remaining

    def release(
        self,
        user_id: str,
        feature: str,
        cost: int = 1,
        period_key: Optional[str] = None,
    ) -> int:
        """Return previously reserved units. Returns the new `used` count."""
        period_key = period_key or self.current_period()
        return self.store.release(user_id, feature, period_key, cost)

    def get_state(
        self,
        user_id: str,
        feature: str,
        plan: PlanTier = PlanTier.FREE,
        period_key: Optional[str] = None,
    ) -> QuotaState:
        period_key = period_key or self.current_period()
        return QuotaState(
            user_id=user_id,
            feature=feature,
            period_key=period_key,
            used=self.store.get_used(user_id, feature, period_key),
            limit=self.config.quota_limit(plan, feature),
        )

    def get_usage(
        self,
        user_id: str,
        plan: PlanTier = PlanTier.FREE,
        period_key: Optional[str] = None,
    ) -> List[QuotaState]:
        """Quota state for every feature of the user's plan in a period."""
        period_key = period_key or self.current_period()
        used = self.store.list_usage(user_id, period_key)
        features = self.config.plan_quotas.get(plan.value, {})
        return [
            QuotaState(
                user_id=user_id,
                feature=feature,
                period_key=period_key,
                used=used.get(feature, 0),
                limit=self.config.quota_limit(plan, feature),
            )
            for feature in sorted(features)
        ]
