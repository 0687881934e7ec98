"""
Transition observers.

Observers are notified after every persisted status change. Sync observers
run inline; async observers are scheduled as tasks so the pipeline never
waits on them. Observer failures are logged and otherwise ignored.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Set

from .models import TransactionRecord, TxStatus, utcnow

logger = logging.getLogger(__name__)


@dataclass
class TransitionEvent:
    tx_id: str
    user_id: str
    chain_id: int
    from_status: Optional[TxStatus]
    to_status: TxStatus
    detail: Optional[str] = None
    record: Optional[TransactionRecord] = None
    at: Any = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "txId": self.tx_id,
            "userId": self.user_id,
            "chainId": self.chain_id,
            "from": self.from_status.value if self.from_status else None,
            "to": self.to_status.value,
            "detail": self.detail,
            "at": self.at.isoformat(),
        }


Observer = Callable[[TransitionEvent], Any]


class TransitionNotifier:
    def __init__(self, observers: Optional[List[Observer]] = None):
        self._observers: List[Observer] = list(observers or [])
        self._pending: Set[asyncio.Task] = set()

    def register(self, observer: Observer) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unregister(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    @property
    def observers(self) -> List[Observer]:
        return list(self._observers)

    def notify(self, event: TransitionEvent) -> None:
        for observer in list(self._observers):
            try:
                result = observer(event)
            except Exception as e:
                logger.warning(f"Transition observer {_name(observer)} failed: {e}")
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Async transition observer failed: {error}")

    async def drain(self) -> None:
        """Wait for scheduled async observers to finish."""
        while self._pending:
            tasks = list(self._pending)
            await asyncio.gather(*tasks, return_exceptions=True)
            self._pending.difference_update(tasks)


def _name(observer: Observer) -> str:
    return getattr(observer, "__qualname__", None) or repr(observer)
