"""
Transaction submitters for sponsored operations.

The sponsor never builds or signs the user's part of a transaction. A submitter
receives a prepared transaction and lands it on-chain, returning its signature.
"""
import base64
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import base58
from loguru import logger
from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.message import to_bytes_versioned
from solders.pubkey import Pubkey
from solders.signature import Signature as SolSignature
from solders.transaction import VersionedTransaction

from gasless.errors import ConfigurationError, SubmissionError


@dataclass
class OperationDescriptor:
    """A prepared operation to sponsor: a base64 serialized transaction plus a free-form label."""
    transaction: str
    category: str = 'USER_TRANSACTION'
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SubmissionReceipt:
    signature: str
    fee_paid: Optional[int] = None
    explorer_url: str = ''


class TransactionSubmitter(ABC):
    """Lands a prepared operation on-chain. Signing keys live behind this interface."""

    @abstractmethod
    def submit(self, operation: OperationDescriptor, signer_context: Dict[str, Any]) -> SubmissionReceipt:
        """
        Submit the operation.

        Args:
            operation: Prepared operation
            signer_context: Who the operation is submitted for (user id, payable address)

        Returns:
            SubmissionReceipt with the external signature

        Raises:
            SubmissionError: the operation could not be landed
        """
        pass


def load_keypair(secret: str) -> Keypair:
    """Load a 64-byte keypair from base58 or a JSON byte array."""
    if not secret:
        raise ConfigurationError('GASLESS_FEE_PAYER_PRIVATE_KEY is not configured.')
    trimmed = secret.strip()
    try:
        if trimmed.startswith('['):
            key_bytes = bytes(json.loads(trimmed))
        else:
            key_bytes = base58.b58decode(trimmed)
        if len(key_bytes) != 64:
            raise ValueError(f'expected 64 bytes, got {len(key_bytes)}')
        return Keypair.from_bytes(key_bytes)
    except ValueError as exc:
        raise ConfigurationError(f'Invalid fee payer private key: {exc}') from exc


class SolanaFeePayerSubmitter(TransactionSubmitter):
    """
    Adds the sponsor's fee-payer signature to a user-signed transaction and sends it.

    The transaction must name the sponsor as fee payer (account 0), must not use
    the sponsor in any instruction, and must be signed by the user it is
    submitted for.
    """

    def __init__(self, config: Dict[str, Any], client: Optional[Client] = None):
        self.config = config
        self._client = client
        self._keypair: Optional[Keypair] = None

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(self.config.get('rpc_url', 'https://api.mainnet-beta.solana.com'))
        return self._client

    @property
    def keypair(self) -> Keypair:
        if self._keypair is None:
            self._keypair = load_keypair(self.config.get('fee_payer_private_key', ''))
        return self._keypair

    def _deserialize_transaction(self, transaction_b64: str) -> VersionedTransaction:
        try:
            transaction_bytes = base64.b64decode(transaction_b64, validate=True)
            return VersionedTransaction.from_bytes(transaction_bytes)
        except Exception as exc:
            raise SubmissionError(f'Failed to deserialize transaction: {exc}') from exc

    def _verify_fee_payer_not_in_instructions(self, tx: VersionedTransaction, fee_payer: Pubkey) -> bool:
        message = tx.message
        for instruction in message.instructions:
            for account_idx in instruction.accounts:
                if message.account_keys[account_idx] == fee_payer:
                    logger.error('Fee payer appears in instruction accounts: security violation')
                    return False
        return True

    def _check_transaction(self, tx: VersionedTransaction, signer_context: Dict[str, Any]) -> None:
        fee_payer = self.keypair.pubkey()
        message = tx.message
        account_keys = list(message.account_keys)

        if not account_keys or account_keys[0] != fee_payer:
            got = account_keys[0] if account_keys else None
            raise SubmissionError(f'Fee payer mismatch: expected {fee_payer}, got {got}')

        if not self._verify_fee_payer_not_in_instructions(tx, fee_payer):
            raise SubmissionError('Fee payer must not appear in instruction accounts')

        required = int(message.header.num_required_signatures)
        if required <= 0:
            raise SubmissionError('Invalid signature header')

        payable_address = signer_context.get('payable_address')
        if payable_address:
            signers = {str(key) for key in account_keys[1:required]}
            if payable_address not in signers:
                raise SubmissionError(f'Transaction is not signed by user wallet {payable_address}')

    def _sign_as_fee_payer(self, tx: VersionedTransaction) -> VersionedTransaction:
        message = tx.message
        required = int(message.header.num_required_signatures)
        signatures = list(tx.signatures)
        if len(signatures) < required:
            signatures.extend([SolSignature.default()] * (required - len(signatures)))
        signatures = signatures[:required]
        signatures[0] = self.keypair.sign_message(to_bytes_versioned(message))
        return VersionedTransaction.populate(message, signatures)

    def _estimate_fee(self, tx: VersionedTransaction) -> Optional[int]:
        try:
            return self.client.get_fee_for_message(tx.message).value
        except Exception as e:
            logger.warning(f'Fee estimation failed: {e}')
            return None

    def _send(self, tx: VersionedTransaction) -> str:
        try:
            response = self.client.send_raw_transaction(
                bytes(tx),
                opts=TxOpts(
                    skip_preflight=False,
                    skip_confirmation=True,
                    max_retries=3,
                    preflight_commitment=Confirmed,
                ),
            )
        except Exception as exc:
            # Public RPC nodes can lag; a brand-new blockhash may fail preflight.
            msg = str(exc)
            if 'Blockhash not found' not in msg and 'BlockhashNotFound' not in msg:
                raise SubmissionError(f'Send transaction failed: {exc}') from exc
            try:
                response = self.client.send_raw_transaction(
                    bytes(tx),
                    opts=TxOpts(skip_preflight=True, skip_confirmation=True, max_retries=3),
                )
            except Exception as retry_exc:
                raise SubmissionError(f'Send transaction failed: {retry_exc}') from retry_exc
        return str(getattr(response, 'value', response))

    def _confirm(self, signature: str) -> None:
        try:
            response = self.client.confirm_transaction(
                SolSignature.from_string(signature),
                commitment=Confirmed,
            )
        except Exception as exc:
            raise SubmissionError(f'Confirmation failed: {exc}', signature) from exc

        statuses = getattr(response, 'value', None) or []
        status = statuses[0] if statuses else None
        if status is not None and getattr(status, 'err', None) is not None:
            raise SubmissionError(f'Transaction failed on-chain: {status.err}', signature)

    def submit(self, operation: OperationDescriptor, signer_context: Dict[str, Any]) -> SubmissionReceipt:
        tx = self._deserialize_transaction(operation.transaction)
        self._check_transaction(tx, signer_context)
        fee = self._estimate_fee(tx)
        signed = self._sign_as_fee_payer(tx)

        logger.info(
            'Submitting sponsored {} transaction for user {}',
            operation.category, signer_context.get('user_id'),
        )
        signature = self._send(signed)
        logger.info('Sponsored transaction submitted: {}', signature)
        self._confirm(signature)
        return SubmissionReceipt(signature=signature, fee_paid=fee)
