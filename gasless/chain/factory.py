"""
Factory for creating chain readers.
"""
from typing import Dict, Any, Type

from .base import ChainReader
from .solana_reader import SolanaChainReader


USDC_MAINNET_MINT = 'EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v'
USDC_DEVNET_MINT = '4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU'

NETWORK_DEFAULTS: Dict[str, Dict[str, Any]] = {
    'solana': {
        'cluster': 'mainnet-beta',
        'rpc_url': 'https://api.mainnet-beta.solana.com',
        'token_mint': USDC_MAINNET_MINT,
    },
    'solana-devnet': {
        'cluster': 'devnet',
        'rpc_url': 'https://api.devnet.solana.com',
        'token_mint': USDC_DEVNET_MINT,
    },
}


class ChainReaderFactory:
    """Factory to create chain readers based on network name."""

    _readers: Dict[str, Type[ChainReader]] = {
        'solana': SolanaChainReader,
        'solana-devnet': SolanaChainReader,
    }

    @classmethod
    def create(cls, network: str, config: Dict[str, Any] = None) -> ChainReader:
        """
        Create a chain reader for the specified network.

        Args:
            network: Network name ('solana', 'solana-devnet')
            config: Optional configuration dict (RPC URL, cluster, ...)

        Returns:
            ChainReader instance

        Raises:
            ValueError: If network is not supported
        """
        network_lower = network.lower().strip()

        reader_class = cls._readers.get(network_lower)
        if reader_class is None:
            supported = ', '.join(cls._readers.keys())
            raise ValueError(
                f"Unsupported network: {network}. "
                f"Supported networks: {supported}"
            )

        merged = dict(NETWORK_DEFAULTS.get(network_lower, {}))
        merged.update({key: value for key, value in (config or {}).items() if value})
        return reader_class(merged)

    @classmethod
    def get_supported_networks(cls) -> list[str]:
        """Get list of supported network names."""
        return list(cls._readers.keys())
