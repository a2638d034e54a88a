"""
Chain readers for confirmed-transaction lookups.
"""
from .base import ChainReader
from .records import InstructionRecord, TokenBalance, TransactionRecord
from .solana_reader import SolanaChainReader
from .factory import ChainReaderFactory, NETWORK_DEFAULTS

__all__ = [
    'ChainReader',
    'ChainReaderFactory',
    'InstructionRecord',
    'NETWORK_DEFAULTS',
    'SolanaChainReader',
    'TokenBalance',
    'TransactionRecord',
]
