"""
Per-user limits persistence.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from ...db.database import Database
from .models import UserLimits

logger = logging.getLogger(__name__)


class LimitsStore:
    """Reads and writes ``UserLimits``; unknown users get the defaults."""

    def __init__(self, db: Database, defaults: Optional[UserLimits] = None):
        self.db = db
        self.defaults = defaults or UserLimits()
        self._cache: Dict[str, UserLimits] = {}

    async def get(self, user_id: str) -> UserLimits:
        cached = self._cache.get(user_id)
        if cached is not None:
            return cached

        row = await self.db.fetch_one(
            "SELECT max_per_tx, max_per_day, cooldown_seconds, slippage_bps FROM user_limits WHERE user_id = ?",
            (user_id,),
        )
        if row is None:
            limits = UserLimits(
                max_per_tx=self.defaults.max_per_tx,
                max_per_day=self.defaults.max_per_day,
                cooldown_seconds=self.defaults.cooldown_seconds,
                slippage_bps=self.defaults.slippage_bps,
            )
        else:
            limits = UserLimits(**row)

        self._cache[user_id] = limits
        return limits

    async def set(self, user_id: str, **changes) -> UserLimits:
        """Update some or all limit fields for a user."""
        current = await self.get(user_id)
        updated = UserLimits(
            max_per_tx=float(changes.get("max_per_tx", current.max_per_tx)),
            max_per_day=float(changes.get("max_per_day", current.max_per_day)),
            cooldown_seconds=int(changes.get("cooldown_seconds", current.cooldown_seconds)),
            slippage_bps=int(changes.get("slippage_bps", current.slippage_bps)),
        )
        if updated.max_per_tx <= 0 or updated.max_per_day <= 0:
            raise ValueError("Spending limits must be positive")
        if updated.cooldown_seconds < 0 or updated.slippage_bps < 0:
            raise ValueError("Cooldown and slippage must not be negative")

        await self.db.execute(
            """INSERT INTO user_limits (user_id, max_per_tx, max_per_day, cooldown_seconds, slippage_bps, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET
                 max_per_tx = excluded.max_per_tx,
                 max_per_day = excluded.max_per_day,
                 cooldown_seconds = excluded.cooldown_seconds,
                 slippage_bps = excluded.slippage_bps,
                 updated_at = excluded.updated_at""",
            (
                user_id,
                updated.max_per_tx,
                updated.max_per_day,
                updated.cooldown_seconds,
                updated.slippage_bps,
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        self._cache[user_id] = updated
        logger.info(f"Limits updated for {user_id}: {updated.to_dict()}")
        return updated
