"""
Solana chain reader.

Fetches confirmed transactions over JSON-RPC and normalizes them into
`TransactionRecord`s. Decoded (`jsonParsed`) responses are preferred because they
carry named token instructions and lookup-table-resolved account keys; raw
(`json`) responses are the fallback for nodes that cannot decode a transaction.
"""
import json
from typing import Any, Dict, Optional

from loguru import logger
from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solders.signature import Signature as SolSignature

from gasless.errors import ChainReaderError, MalformedDataError

from .base import ChainReader
from .records import TransactionRecord


class SolanaChainReader(ChainReader):
    """Reader for Solana mainnet-beta / devnet."""

    ENCODINGS = ('jsonParsed', 'json')

    def __init__(self, config: Dict[str, Any], client: Optional[Client] = None):
        super().__init__(config)
        self._client = client

    @property
    def chain_name(self) -> str:
        return 'solana'

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(self.config.get('rpc_url', 'https://api.mainnet-beta.solana.com'))
        return self._client

    def get_confirmed_transaction(self, signature: str) -> Optional[TransactionRecord]:
        try:
            sol_signature = SolSignature.from_string(signature)
        except Exception as exc:
            raise MalformedDataError(f'Invalid transaction signature: {exc}', signature) from exc

        for encoding in self.ENCODINGS:
            result = self._fetch(sol_signature, signature, encoding)
            if result is not None:
                logger.debug('Fetched transaction {} with {} encoding', signature, encoding)
                return TransactionRecord.from_rpc(signature, result)

        return None

    def _fetch(self, sol_signature: SolSignature, signature: str, encoding: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.get_transaction(
                sol_signature,
                encoding=encoding,
                commitment=Confirmed,
                max_supported_transaction_version=0,
            )
        except Exception as exc:
            logger.warning('RPC getTransaction failed for {} ({}): {}', signature, encoding, exc)
            raise ChainReaderError(f'RPC getTransaction failed: {exc}', signature) from exc

        if getattr(response, 'value', None) is None:
            return None

        try:
            body = json.loads(response.to_json())
        except (TypeError, ValueError) as exc:
            raise MalformedDataError(f'Unable to decode RPC response: {exc}', signature) from exc

        result = body.get('result') if isinstance(body, dict) else None
        if result is None:
            return None
        return result

    def get_explorer_url(self, signature: str) -> str:
        """Get Solscan explorer URL."""
        cluster = self.config.get('cluster', 'mainnet-beta')
        suffix = '' if cluster == 'mainnet-beta' else f'?cluster={cluster}'
        return f"https://solscan.io/tx/{signature}{suffix}"
