"""
Admin and per-user contract allow/block lists.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from ...db.database import Database
from .models import GLOBAL_SCOPE, AllowlistAction, ContractListEntry

logger = logging.getLogger(__name__)


class ContractListStore:
    """SQLite-backed contract lists.

    Entries are scoped to a user id, or to ``"*"`` for admin entries that apply
    to every user. A user-scoped entry takes precedence over a global one.
    """

    def __init__(self, db: Database):
        self.db = db

    async def set_action(
        self,
        address: str,
        chain_id: int,
        action: AllowlistAction,
        reason: str = "",
        scope: str = GLOBAL_SCOPE,
    ) -> ContractListEntry:
        entry = ContractListEntry(
            address=address.lower(),
            chain_id=chain_id,
            action=AllowlistAction(action),
            reason=reason,
            scope=scope,
            added_at=datetime.now(timezone.utc),
        )
        await self.db.execute(
            """INSERT INTO contract_list (scope, address, chain_id, action, reason, added_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(scope, address, chain_id) DO UPDATE SET
                 action = excluded.action,
                 reason = excluded.reason,
                 added_at = excluded.added_at""",
            (scope, entry.address, chain_id, entry.action.value, reason, entry.added_at.isoformat()),
        )
        logger.info(f"Contract list updated: scope={scope} {entry.address} chain={chain_id} {entry.action.value}")
        return entry

    async def remove(self, address: str, chain_id: int, scope: str = GLOBAL_SCOPE) -> bool:
        cursor = await self.db.execute(
            "DELETE FROM contract_list WHERE scope = ? AND address = ? AND chain_id = ?",
            (scope, address.lower(), chain_id),
        )
        return cursor.rowcount > 0

    async def lookup(
        self,
        address: str,
        chain_id: int,
        user_id: Optional[str] = None,
    ) -> Optional[ContractListEntry]:
        """Most specific entry for the address: user scope first, then global."""
        scopes = [user_id, GLOBAL_SCOPE] if user_id and user_id != GLOBAL_SCOPE else [GLOBAL_SCOPE]
        for scope in scopes:
            row = await self.db.fetch_one(
                "SELECT * FROM contract_list WHERE scope = ? AND address = ? AND chain_id = ?",
                (scope, address.lower(), chain_id),
            )
            if row:
                return _row_to_entry(row)
        return None

    async def list_entries(self, scope: str = GLOBAL_SCOPE) -> List[ContractListEntry]:
        rows = await self.db.fetch_all(
            "SELECT * FROM contract_list WHERE scope = ? ORDER BY added_at DESC",
            (scope,),
        )
        return [_row_to_entry(r) for r in rows]


def _row_to_entry(row: dict) -> ContractListEntry:
    return ContractListEntry(
        address=row["address"],
        chain_id=row["chain_id"],
        action=AllowlistAction(row["action"]),
        reason=row["reason"],
        scope=row["scope"],
        added_at=datetime.fromisoformat(row["added_at"]),
    )
