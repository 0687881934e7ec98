"""
MEV-protected submission through a private relay.
"""

import logging
from typing import TYPE_CHECKING, Optional

from ..recovery import RetryConfig, RetryPolicy

if TYPE_CHECKING:
    from ...providers.base import PrivateRelay

logger = logging.getLogger(__name__)


class MevProtection:
    """Sends signed transactions to a private relay.

    ``send_protected`` never raises: any relay failure is logged and reported
    as ``None`` so the caller can fall back to a public broadcast.
    """

    def __init__(self, relay: "PrivateRelay", retry_policy: Optional[RetryPolicy] = None, attempts: int = 2):
        self.relay = relay
        self.retry_policy = retry_policy or RetryPolicy(
            RetryConfig(max_attempts=attempts, initial_delay_seconds=0.3, max_delay_seconds=5.0)
        )

    def is_supported(self, chain_id: int) -> bool:
        return chain_id in self.relay.supported_chains

    async def send_protected(self, raw_transaction: str) -> Optional[str]:
        try:
            tx_hash = await self.retry_policy.run(
                lambda: self.relay.send_raw_transaction(raw_transaction),
                description="private relay submission",
            )
        except Exception as e:
            logger.error(f"Private relay submission failed: {e}")
            return None

        logger.info(f"Transaction sent via private relay: {tx_hash}")
        return tx_hash
