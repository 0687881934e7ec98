"""
Transaction log.

Every pipeline transition lands here before the next step starts. Records are
created once and updated in place on status change; each change is also
appended to ``tx_log_history``. Terminal records accept no further updates.
"""

import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..core.execution.models import (
    ExecutionMeta,
    StatusChange,
    TransactionRecord,
    TransactionRequest,
    TxStatus,
    utcnow,
)
from ..core.execution.state import validate_transition
from .database import Database

logger = logging.getLogger(__name__)

_JSON_FIELDS = ("simulation_result", "guardrail_checks", "risk_verdict")
_UPDATABLE_FIELDS = frozenset({
    "value_usd",
    "hash",
    "nonce",
    "simulation_result",
    "guardrail_checks",
    "risk_verdict",
    "gas_used",
    "gas_price",
    "block_number",
    "error",
    "error_code",
})


class TransactionNotFoundError(KeyError):
    pass


class TransactionLog:
    """SQLite-backed store of ``TransactionRecord`` rows."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self._clock = clock

    async def create(
        self,
        request: TransactionRequest,
        meta: ExecutionMeta,
        value_usd: Optional[float] = None,
    ) -> TransactionRecord:
        now = self._clock()
        record = TransactionRecord(
            id=str(uuid.uuid4()),
            user_id=meta.user_id,
            chain_id=request.chain_id,
            from_address=request.from_address,
            to_address=request.to_address,
            value=str(request.value),
            value_usd=value_usd,
            skill_name=meta.skill_name,
            intent_description=meta.intent_description,
            created_at=now,
            updated_at=now,
        )

        await self.db.execute_many([
            (
                """INSERT INTO tx_log (id, user_id, chain_id, from_addr, to_addr, value, value_usd,
                                       status, skill_name, intent_description, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.id,
                    record.user_id,
                    record.chain_id,
                    record.from_address,
                    record.to_address,
                    record.value,
                    record.value_usd,
                    record.status.value,
                    record.skill_name,
                    record.intent_description,
                    now.isoformat(),
                    now.isoformat(),
                ),
            ),
            self._history_insert(record.id, None, TxStatus.PENDING, None, now),
        ])

        logger.info(f"Transaction logged: {record.id} user={record.user_id} skill={record.skill_name}")
        return record

    async def update_status(
        self,
        tx_id: str,
        status: TxStatus,
        detail: Optional[str] = None,
        **fields: Any,
    ) -> TransactionRecord:
        """Advance a record to ``status`` and set any non-None ``fields``.

        Raises ``InvalidTransitionError`` for a move the transition table does
        not allow, which includes any update of a terminal record.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown transaction fields: {sorted(unknown)}")

        current = await self.get(tx_id)
        if current is None:
            raise TransactionNotFoundError(tx_id)

        validate_transition(current.status, status)

        now = self._clock()
        updates = {k: v for k, v in fields.items() if v is not None}
        assignments = ["status = ?", "updated_at = ?"]
        params: List[Any] = [status.value, now.isoformat()]
        for name, value in updates.items():
            assignments.append(f"{name} = ?")
            params.append(_encode(name, value))
        params.extend([tx_id, current.status.value])

        await self.db.execute_many([
            (
                f"UPDATE tx_log SET {', '.join(assignments)} WHERE id = ? AND status = ?",
                tuple(params),
            ),
            self._history_insert(tx_id, current.status, status, detail, now),
        ])

        logger.debug(f"Transaction {tx_id}: {current.status.value} -> {status.value}")

        for name, value in updates.items():
            setattr(current, name, value)
        current.status = status
        current.updated_at = now
        return current

    async def get(self, tx_id: str) -> Optional[TransactionRecord]:
        row = await self.db.fetch_one("SELECT * FROM tx_log WHERE id = ?", (tx_id,))
        return _row_to_record(row) if row else None

    async def get_by_user(self, user_id: str, limit: int = 10) -> List[TransactionRecord]:
        rows = await self.db.fetch_all(
            "SELECT * FROM tx_log WHERE user_id = ? ORDER BY created_at DESC LIMIT ?",
            (user_id, limit),
        )
        return [_row_to_record(r) for r in rows]

    async def get_by_status(
        self,
        status: TxStatus,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[TransactionRecord]:
        if user_id is None:
            rows = await self.db.fetch_all(
                "SELECT * FROM tx_log WHERE status = ? ORDER BY created_at ASC LIMIT ?",
                (status.value, limit),
            )
        else:
            rows = await self.db.fetch_all(
                "SELECT * FROM tx_log WHERE status = ? AND user_id = ? ORDER BY created_at ASC LIMIT ?",
                (status.value, user_id, limit),
            )
        return [_row_to_record(r) for r in rows]

    async def get_user_activity(
        self,
        user_id: str,
        since: datetime,
        statuses: Iterable[TxStatus] = (TxStatus.APPROVED, TxStatus.SIGNED, TxStatus.BROADCAST, TxStatus.CONFIRMED),
    ) -> List[TransactionRecord]:
        """Records created at or after ``since`` in the given statuses, newest first."""
        wanted = [s.value for s in statuses]
        placeholders = ", ".join("?" for _ in wanted)
        rows = await self.db.fetch_all(
            f"""SELECT * FROM tx_log
                WHERE user_id = ? AND created_at >= ? AND status IN ({placeholders})
                ORDER BY created_at DESC""",
            (user_id, since.isoformat(), *wanted),
        )
        return [_row_to_record(r) for r in rows]

    async def get_history(self, tx_id: str) -> List[StatusChange]:
        rows = await self.db.fetch_all(
            "SELECT * FROM tx_log_history WHERE tx_id = ? ORDER BY id ASC",
            (tx_id,),
        )
        return [
            StatusChange(
                tx_id=r["tx_id"],
                from_status=TxStatus(r["from_status"]) if r["from_status"] else None,
                to_status=TxStatus(r["to_status"]),
                detail=r["detail"],
                at=datetime.fromisoformat(r["created_at"]),
            )
            for r in rows
        ]

    async def get_gas_cost_summary(self, user_id: str, period_days: int = 1) -> Dict[str, Any]:
        """Total gas spent (wei) by confirmed transactions, per chain."""
        since = self._clock() - timedelta(days=period_days)
        rows = await self.db.fetch_all(
            """SELECT chain_id, gas_used, gas_price FROM tx_log
               WHERE user_id = ? AND status = 'confirmed' AND created_at >= ?
                 AND gas_used IS NOT NULL AND gas_price IS NOT NULL""",
            (user_id, since.isoformat()),
        )

        per_chain: Dict[int, int] = {}
        for row in rows:
            cost = int(row["gas_used"]) * int(row["gas_price"])
            per_chain[row["chain_id"]] = per_chain.get(row["chain_id"], 0) + cost

        return {
            "total_gas_cost_wei": sum(per_chain.values()),
            "tx_count": len(rows),
            "per_chain": per_chain,
        }

    @staticmethod
    def format_history(records: List[TransactionRecord]) -> str:
        if not records:
            return "No transactions found."

        lines = ["*Recent Transactions*", ""]
        for tx in records:
            if tx.status == TxStatus.CONFIRMED:
                icon = "+"
            elif tx.status in (TxStatus.FAILED, TxStatus.REJECTED):
                icon = "x"
            else:
                icon = "~"
            hash_short = f"`{tx.hash[:10]}...`" if tx.hash else "pending"
            lines.append(
                f"{icon} {tx.skill_name or 'tx'} | {tx.status.value} | {hash_short} | {tx.created_at.date().isoformat()}"
            )
        return "\n".join(lines)

    @staticmethod
    def _history_insert(
        tx_id: str,
        from_status: Optional[TxStatus],
        to_status: TxStatus,
        detail: Optional[str],
        at: datetime,
    ) -> tuple:
        return (
            "INSERT INTO tx_log_history (tx_id, from_status, to_status, detail, created_at) VALUES (?, ?, ?, ?, ?)",
            (tx_id, from_status.value if from_status else None, to_status.value, detail, at.isoformat()),
        )


def _encode(name: str, value: Any) -> Any:
    if name in _JSON_FIELDS:
        return json.dumps(value)
    if name == "gas_price":
        # May exceed SQLite's 64-bit integer range
        return str(value)
    return value


def _row_to_record(row: Dict[str, Any]) -> TransactionRecord:
    decoded = {name: json.loads(row[name]) if row[name] else None for name in _JSON_FIELDS}
    return TransactionRecord(
        id=row["id"],
        user_id=row["user_id"],
        chain_id=row["chain_id"],
        from_address=row["from_addr"],
        to_address=row["to_addr"],
        value=row["value"],
        value_usd=row["value_usd"],
        hash=row["hash"],
        nonce=row["nonce"],
        status=TxStatus(row["status"]),
        skill_name=row["skill_name"],
        intent_description=row["intent_description"],
        simulation_result=decoded["simulation_result"],
        guardrail_checks=decoded["guardrail_checks"],
        risk_verdict=decoded["risk_verdict"],
        gas_used=row["gas_used"],
        gas_price=int(row["gas_price"]) if row["gas_price"] is not None else None,
        block_number=row["block_number"],
        error=row["error"],
        error_code=row["error_code"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )
