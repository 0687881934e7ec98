"""
Signing capability consumed by the executor.

Key custody lives outside this package; a wallet integration implements
``Signer`` and is handed to ``TransactionExecutor.execute`` per call.
"""

from abc import ABC, abstractmethod

from .models import PreparedTransaction, SignedTransaction


class SignerError(Exception):
    """Raised by signer implementations for any signing failure."""
    pass


class Signer(ABC):
    @abstractmethod
    async def sign_transaction(self, prepared: PreparedTransaction) -> SignedTransaction:
        """Sign a fully prepared transaction and return the raw bytes and hash."""
        pass
