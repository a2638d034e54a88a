"""
Base chain reader interface.
"""
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from .records import TransactionRecord


class ChainReader(ABC):
    """
    Abstract base class for reading confirmed transactions.
    Each network family (Solana mainnet/devnet, ...) implements this interface.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the chain reader.

        Args:
            config: Network-specific configuration (RPC URL, cluster, explorer URL)
        """
        self.config = config

    @property
    @abstractmethod
    def chain_name(self) -> str:
        """Return the chain name (e.g., 'solana')."""
        pass

    @abstractmethod
    def get_confirmed_transaction(self, signature: str) -> Optional[TransactionRecord]:
        """
        Fetch a confirmed transaction and its metadata.

        Args:
            signature: Transaction signature

        Returns:
            TransactionRecord, or None if the transaction is not (yet) visible

        Raises:
            ChainReaderError: transient RPC failure
            MalformedDataError: the response could not be interpreted
        """
        pass

    def get_explorer_url(self, signature: str) -> str:
        """
        Get block explorer URL for transaction.

        Args:
            signature: Transaction signature

        Returns:
            Explorer URL
        """
        return f"{self.config.get('explorer_url', '')}/tx/{signature}"
