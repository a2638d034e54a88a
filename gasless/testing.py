"""
Builders for getTransaction-shaped results and a fake chain reader, for tests.
"""
import base64
import json
from typing import Any, Dict, Iterable, List, Optional

import base58
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferCheckedParams,
    TransferParams,
    get_associated_token_address,
    transfer,
    transfer_checked,
)

from gasless.chain.base import ChainReader
from gasless.chain.records import TransactionRecord

TOKEN_PROGRAM = str(TOKEN_PROGRAM_ID)


def new_address() -> str:
    return str(Pubkey.new_unique())


def new_signature(seed: int = 0) -> str:
    return base58.b58encode(seed.to_bytes(8, 'little') + bytes(56)).decode()


def transfer_data(amount: int) -> str:
    return base58.b58encode(bytes([3]) + amount.to_bytes(8, 'little')).decode()


def transfer_checked_data(amount: int, decimals: int = 6) -> str:
    return base58.b58encode(bytes([12]) + amount.to_bytes(8, 'little') + bytes([decimals])).decode()


def token_balance(index: int, mint: str, amount: int, owner: Optional[str] = None) -> Dict[str, Any]:
    return {
        'accountIndex': index,
        'mint': mint,
        'owner': owner,
        'programId': TOKEN_PROGRAM,
        'uiTokenAmount': {'amount': str(amount), 'decimals': 6},
    }


def rpc_result(
    account_keys: List[Any],
    instructions: Iterable[Dict[str, Any]] = (),
    pre_token_balances: Iterable[Dict[str, Any]] = (),
    post_token_balances: Iterable[Dict[str, Any]] = (),
    log_messages: Iterable[str] = (),
    inner_instructions: Iterable[Dict[str, Any]] = (),
    err: Any = None,
    loaded_addresses: Optional[Dict[str, List[str]]] = None,
    version: Any = 'legacy',
) -> Dict[str, Any]:
    meta: Dict[str, Any] = {
        'err': err,
        'fee': 5000,
        'preTokenBalances': list(pre_token_balances),
        'postTokenBalances': list(post_token_balances),
        'logMessages': list(log_messages),
        'innerInstructions': list(inner_instructions),
    }
    if loaded_addresses is not None:
        meta['loadedAddresses'] = loaded_addresses
    return {
        'slot': 1234,
        'version': version,
        'transaction': {
            'signatures': ['placeholder'],
            'message': {'accountKeys': account_keys, 'instructions': list(instructions)},
        },
        'meta': meta,
    }


def x402_payment_header(
    destination: str,
    mint: str,
    amount: int,
    payer: Optional[Keypair] = None,
    checked: bool = True,
    network: str = 'solana-devnet',
) -> str:
    """A base64 X-PAYMENT value wrapping a signed v0 token transfer."""
    payer = payer or Keypair()
    mint_key = Pubkey.from_string(mint)
    source = get_associated_token_address(payer.pubkey(), mint_key)
    if checked:
        ix = transfer_checked(
            TransferCheckedParams(
                program_id=TOKEN_PROGRAM_ID,
                source=source,
                mint=mint_key,
                dest=Pubkey.from_string(destination),
                owner=payer.pubkey(),
                amount=amount,
                decimals=6,
            )
        )
    else:
        ix = transfer(
            TransferParams(
                program_id=TOKEN_PROGRAM_ID,
                source=source,
                dest=Pubkey.from_string(destination),
                owner=payer.pubkey(),
                amount=amount,
            )
        )
    message = MessageV0.try_compile(payer.pubkey(), [ix], [], Hash.default())
    tx = VersionedTransaction(message, [payer])
    payment = {
        'x402Version': 1,
        'scheme': 'exact',
        'network': network,
        'payload': {'serializedTransaction': base64.b64encode(bytes(tx)).decode()},
    }
    return base64.b64encode(json.dumps(payment).encode()).decode()


class FakeChainReader(ChainReader):
    """Serves prepared results; a signature can be made invisible for the first N polls."""

    def __init__(self, results: Optional[Dict[str, Dict[str, Any]]] = None, hidden_polls: int = 0):
        super().__init__({'cluster': 'devnet', 'explorer_url': 'https://explorer.test'})
        self.results = results or {}
        self.hidden_polls = hidden_polls
        self.calls: List[str] = []

    @property
    def chain_name(self) -> str:
        return 'fake'

    def get_confirmed_transaction(self, signature: str) -> Optional[TransactionRecord]:
        self.calls.append(signature)
        if len(self.calls) <= self.hidden_polls:
            return None
        result = self.results.get(signature)
        if result is None:
            return None
        return TransactionRecord.from_rpc(signature, result)
