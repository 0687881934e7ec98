"""
Nonce management for concurrent transactions.

The manager is the only authority handing out nonces for an (address, chain)
pair. Reservations for one key are serialized by a per-key lock; distinct keys
proceed in parallel.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, Optional, Set

if TYPE_CHECKING:
    from ...providers.base import ChainClient

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class NonceState:
    """Tracks nonce state for an address on a chain."""
    address: str
    chain_id: int
    confirmed_nonce: int                        # Next nonce the chain expects
    pending_nonce: int                          # Next never-issued nonce
    reserved_nonces: Set[int] = field(default_factory=set)
    released_nonces: Set[int] = field(default_factory=set)
    last_updated: datetime = field(default_factory=_now)


class NonceManager:
    """
    Manages nonces for concurrent transaction execution.

    - Seeded from the chain's pending transaction count on first use of a key
    - Released nonces are reissued lowest first so they are not stranded
    - Confirmed nonces advance the confirmed watermark
    """

    def __init__(self, chain_client: "ChainClient"):
        self.chain_client = chain_client
        self._states: Dict[str, NonceState] = {}  # key: "{chain_id}:{address}"
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_key(self, chain_id: int, address: str) -> str:
        return f"{chain_id}:{address.lower()}"

    def _get_lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _seed(self, key: str, address: str, chain_id: int) -> NonceState:
        on_chain_nonce = await self.chain_client.get_transaction_count(chain_id, address, "pending")
        state = NonceState(
            address=address.lower(),
            chain_id=chain_id,
            confirmed_nonce=on_chain_nonce,
            pending_nonce=on_chain_nonce,
        )
        self._states[key] = state
        logger.debug(f"Nonce state seeded for {key} at {on_chain_nonce}")
        return state

    async def reserve(self, address: str, chain_id: int) -> int:
        """Reserve the next usable nonce for an address."""
        key = self._get_key(chain_id, address)

        async with self._get_lock(key):
            state = self._states.get(key)
            if state is None:
                state = await self._seed(key, address, chain_id)

            if state.released_nonces:
                nonce = min(state.released_nonces)
                state.released_nonces.discard(nonce)
            else:
                nonce = state.pending_nonce
                state.pending_nonce = nonce + 1

            state.reserved_nonces.add(nonce)
            state.last_updated = _now()
            return nonce

    async def release(self, address: str, chain_id: int, nonce: int) -> None:
        """
        Return a reserved nonce that never reached any mempool.

        The caller is responsible for being certain of that; a released nonce
        will be handed to the next reservation.
        """
        key = self._get_key(chain_id, address)

        async with self._get_lock(key):
            state = self._states.get(key)
            if state is None or nonce not in state.reserved_nonces:
                return

            state.reserved_nonces.discard(nonce)

            if nonce == state.pending_nonce - 1:
                state.pending_nonce = nonce
                # Collapse any released run now at the top
                while state.pending_nonce - 1 in state.released_nonces:
                    state.released_nonces.discard(state.pending_nonce - 1)
                    state.pending_nonce -= 1
            elif nonce >= state.confirmed_nonce:
                state.released_nonces.add(nonce)

            state.last_updated = _now()
            logger.info(f"Nonce {nonce} released for {key}")

    async def confirm(self, address: str, chain_id: int, nonce: int) -> None:
        """Mark a nonce as consumed on-chain (included, successful or reverted)."""
        key = self._get_key(chain_id, address)

        async with self._get_lock(key):
            state = self._states.get(key)
            if state is None:
                return

            state.reserved_nonces.discard(nonce)
            state.released_nonces.discard(nonce)
            if nonce >= state.confirmed_nonce:
                state.confirmed_nonce = nonce + 1
            if state.pending_nonce < state.confirmed_nonce:
                state.pending_nonce = state.confirmed_nonce
            state.last_updated = _now()

    async def sync_with_chain(self, address: str, chain_id: int) -> int:
        """
        Sync nonce state with on-chain data.

        Returns the current on-chain pending nonce.
        """
        key = self._get_key(chain_id, address)

        async with self._get_lock(key):
            state = self._states.get(key)
            if state is None:
                return (await self._seed(key, address, chain_id)).confirmed_nonce

            on_chain_nonce = await self.chain_client.get_transaction_count(chain_id, address, "pending")
            state.confirmed_nonce = on_chain_nonce
            state.reserved_nonces = {n for n in state.reserved_nonces if n >= on_chain_nonce}
            state.released_nonces = {n for n in state.released_nonces if n >= on_chain_nonce}
            if on_chain_nonce > state.pending_nonce:
                state.pending_nonce = on_chain_nonce
            state.last_updated = _now()
            return on_chain_nonce

    def get_state(self, address: str, chain_id: int) -> Optional[NonceState]:
        """Get the current nonce state for an address."""
        return self._states.get(self._get_key(chain_id, address))

    def clear_state(self, address: str, chain_id: int) -> None:
        """Forget cached nonce state; the next reservation reseeds from chain."""
        self._states.pop(self._get_key(chain_id, address), None)
