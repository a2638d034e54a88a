"""
Pre-submission check of an x402 payment payload.

The X-PAYMENT header is base64-encoded JSON:

    {"x402Version": 1, "scheme": "exact", "network": "solana",
     "payload": {"serializedTransaction": "<base64 transaction>"}}

The transaction inside is signed but not yet sent. `check_payment_payload`
decodes its SPL token transfer instructions and confirms that at least the
quoted amount goes to the quoted token account. Passing the check grants no
credit: credit only follows a confirmed signature recorded through the ledger.
"""
import base64
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from loguru import logger
from solders.transaction import VersionedTransaction

from gasless.chain.records import InstructionRecord
from gasless.errors import InvalidPaymentPayloadError, VerificationMismatchError
from gasless.quote import PaymentQuote
from gasless.verification.strategies import (
    TRANSFER_CHECKED,
    PaymentTarget,
    _decode_raw_transfer,
    _is_token_instruction,
)

SUPPORTED_SCHEMES = ('exact',)


@dataclass(frozen=True)
class PaymentPayloadCheck:
    amount: int
    expected_amount: int
    destination: str
    payer: Optional[str]
    network: str
    x402_version: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            'amount': self.amount,
            'expectedAmount': self.expected_amount,
            'destinationTokenAccount': self.destination,
            'payer': self.payer,
            'network': self.network,
            'x402Version': self.x402_version,
        }


def decode_payment_header(header: str) -> Dict[str, Any]:
    """Decode an X-PAYMENT header value into its JSON object."""
    try:
        decoded = json.loads(base64.b64decode(header, validate=True).decode('utf-8'))
    except ValueError as exc:
        raise InvalidPaymentPayloadError(f'X-PAYMENT is not base64-encoded JSON: {exc}') from exc
    if not isinstance(decoded, dict):
        raise InvalidPaymentPayloadError('X-PAYMENT must decode to a JSON object')
    return decoded


def _extract_transaction_b64(payment: Dict[str, Any]) -> Optional[str]:
    # payload.serializedTransaction, with payload.transaction and a bare string also seen in the wild
    raw_payload = payment.get('payload')
    if isinstance(raw_payload, dict):
        return raw_payload.get('serializedTransaction') or raw_payload.get('transaction')
    if isinstance(raw_payload, str):
        return raw_payload
    return None


def _deserialize_transaction(transaction_b64: str) -> VersionedTransaction:
    try:
        return VersionedTransaction.from_bytes(base64.b64decode(transaction_b64, validate=True))
    except Exception as exc:
        raise InvalidPaymentPayloadError(f'Failed to deserialize transaction: {exc}') from exc


def instruction_records(tx: VersionedTransaction) -> List[InstructionRecord]:
    """
    Top-level instructions with account indices resolved against the static keys.

    Addresses loaded from lookup tables cannot be resolved offline; they are
    kept as `lookup:<index>` placeholders and never match a destination.
    """
    keys = [str(key) for key in tx.message.account_keys]

    def resolve(index: int) -> str:
        return keys[index] if index < len(keys) else f'lookup:{index}'

    return [
        InstructionRecord(
            program_id=resolve(ix.program_id_index),
            accounts=[resolve(index) for index in ix.accounts],
            data=bytes(ix.data),
        )
        for ix in tx.message.instructions
    ]


def _transfer_authority(ix: InstructionRecord) -> Optional[str]:
    # Transfer: [source, destination, authority]; TransferChecked: [source, mint, destination, authority]
    position = 3 if ix.data[0] == TRANSFER_CHECKED else 2
    return ix.accounts[position] if len(ix.accounts) > position else None


def check_payment_payload(payment: Dict[str, Any], quote: PaymentQuote) -> PaymentPayloadCheck:
    """
    Check a decoded x402 payment against the current quote.

    Raises:
        InvalidPaymentPayloadError: wrong scheme or network, or no decodable transaction
        VerificationMismatchError: the transaction does not pay the quoted account enough
    """
    scheme = payment.get('scheme')
    if scheme is not None and scheme not in SUPPORTED_SCHEMES:
        raise InvalidPaymentPayloadError(f'Unsupported scheme: {scheme}')
    network = payment.get('network')
    if network is not None and network != quote.network:
        raise InvalidPaymentPayloadError(f'Payment is for network {network}, expected {quote.network}')

    transaction_b64 = _extract_transaction_b64(payment)
    if not transaction_b64:
        raise InvalidPaymentPayloadError('Payment payload has no serializedTransaction')
    tx = _deserialize_transaction(transaction_b64)

    target = PaymentTarget(
        mint=quote.token_id,
        expected_amount=quote.amount_smallest_units,
        owner=quote.destination_wallet,
        token_account=quote.destination_token_account,
    )
    destinations = target.destination_accounts()
    total = 0
    payer = None
    for ix in instruction_records(tx):
        if not _is_token_instruction(ix):
            continue
        transfer = _decode_raw_transfer(ix)
        if transfer is None:
            continue
        destination, amount, mint = transfer
        if destination not in destinations:
            continue
        if mint is not None and mint != target.mint:
            continue
        total += amount
        payer = payer or _transfer_authority(ix)

    if total < target.expected_amount:
        if total:
            message = f'Found transfer of {total}, expected {target.expected_amount}'
        else:
            message = f'No token transfer to {quote.destination_token_account} found'
        raise VerificationMismatchError(
            message,
            amount_received=total,
            expected_amount=target.expected_amount,
        )

    logger.info(
        'x402 payment payload accepted: {} units to {} from {}',
        total, quote.destination_token_account, payer,
    )
    return PaymentPayloadCheck(
        amount=total,
        expected_amount=target.expected_amount,
        destination=quote.destination_token_account,
        payer=payer,
        network=quote.network,
        x402_version=payment.get('x402Version'),
    )
