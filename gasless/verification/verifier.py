"""
Payment verification from a confirmed transaction signature.

The verifier waits (bounded) for the transaction to become visible, then runs
the amount-extraction strategies in order. The first strategy that finds usable
data decides the received amount; an insufficient amount from an early strategy
is a mismatch and later, weaker strategies are not consulted.
"""
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence

from asgiref.sync import sync_to_async
from loguru import logger

from gasless.chain.base import ChainReader
from gasless.chain.records import TransactionRecord
from gasless.errors import ChainReaderError, UnconfirmedError

from .strategies import PaymentTarget, VerificationStrategy, build_strategies


@dataclass(frozen=True)
class RetryPolicy:
    """Confirmation wait: one initial delay, then up to `max_attempts` polls spaced by `retry_delay`."""
    initial_delay: float = 5.0
    max_attempts: int = 5
    retry_delay: float = 3.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError('max_attempts must be at least 1')
        if self.initial_delay < 0 or self.retry_delay < 0:
            raise ValueError('retry delays must not be negative')

    def delay_before(self, attempt: int) -> float:
        return self.initial_delay if attempt == 1 else self.retry_delay

    @property
    def total_budget(self) -> float:
        return self.initial_delay + self.retry_delay * (self.max_attempts - 1)


@dataclass
class VerificationResult:
    """Result of payment verification."""
    signature: str
    verified: bool
    amount_received: int = 0
    expected_amount: int = 0
    evidence_method: Optional[str] = None
    permissive: bool = False
    error: Optional[str] = None
    explorer_url: Optional[str] = None
    evidence: Dict[str, Any] = field(default_factory=dict, repr=False)

    def to_dict(self) -> dict:
        return {
            'signature': self.signature,
            'verified': self.verified,
            'amountReceived': self.amount_received,
            'expectedAmount': self.expected_amount,
            'evidenceMethod': self.evidence_method,
            'permissive': self.permissive,
            'error': self.error,
            'explorerUrl': self.explorer_url,
        }


class PaymentVerifier:
    """
    Verifies that a confirmed transaction moved at least the expected amount of a
    token into the target account.

    Verification is read-only: it never touches the ledger, so calling it twice
    for the same signature is harmless.
    """

    def __init__(
        self,
        reader: ChainReader,
        retry_policy: Optional[RetryPolicy] = None,
        strategies: Optional[Sequence[VerificationStrategy]] = None,
        allow_permissive_fallback: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.reader = reader
        self.retry_policy = retry_policy or RetryPolicy()
        self.strategies = tuple(strategies) if strategies is not None else build_strategies(allow_permissive_fallback)
        self.sleep = sleep

    def verify(
        self,
        signature: str,
        owner_or_account: str,
        mint: str,
        expected_amount: int,
        token_account: Optional[str] = None,
    ) -> VerificationResult:
        """
        Verify a payment transaction.

        Args:
            signature: Transaction signature
            owner_or_account: Recipient wallet, or the token account itself when
                `token_account` is not given
            mint: Token mint
            expected_amount: Minimum amount in smallest units
            token_account: Recipient token account, if known

        Returns:
            VerificationResult; `verified` is False on an amount mismatch

        Raises:
            UnconfirmedError: the transaction never became visible (retry later)
            MalformedDataError: the transaction could not be interpreted
        """
        target = PaymentTarget(
            mint=mint,
            expected_amount=int(expected_amount),
            owner=owner_or_account,
            token_account=token_account or owner_or_account,
        )
        record = self.wait_for_confirmation(signature)
        return self.evaluate(record, target)

    async def averify(self, *args, **kwargs) -> VerificationResult:
        """`verify` on a worker thread, so async callers can run many at once."""
        return await sync_to_async(self.verify, thread_sensitive=False)(*args, **kwargs)

    def wait_for_confirmation(self, signature: str) -> TransactionRecord:
        policy = self.retry_policy
        last_error: Optional[str] = None

        for attempt in range(1, policy.max_attempts + 1):
            self.sleep(policy.delay_before(attempt))
            logger.debug('Confirmation poll {}/{} for {}', attempt, policy.max_attempts, signature)
            try:
                record = self.reader.get_confirmed_transaction(signature)
            except ChainReaderError as exc:
                last_error = exc.message
                logger.warning('Transient RPC error on poll {} for {}: {}', attempt, signature, exc.message)
                continue
            if record is not None:
                return record

        logger.info('Transaction {} not confirmed after {} attempts', signature, policy.max_attempts)
        message = f'Transaction not confirmed after {policy.max_attempts} attempts'
        if last_error:
            message = f'{message} (last RPC error: {last_error})'
        raise UnconfirmedError(message, signature)

    def evaluate(self, record: TransactionRecord, target: PaymentTarget) -> VerificationResult:
        """Run the strategies against an already-fetched transaction."""
        result = VerificationResult(
            signature=record.signature,
            verified=False,
            expected_amount=target.expected_amount,
            explorer_url=self.reader.get_explorer_url(record.signature),
            evidence=record.evidence(),
        )

        if not record.succeeded:
            result.error = f'Transaction failed on-chain: {record.error}'
            logger.info('Payment {} rejected: {}', record.signature, result.error)
            return result

        for strategy in self.strategies:
            amount = strategy(record, target)
            logger.debug('Strategy {} on {} -> {}', strategy.name, record.signature, amount)
            if amount is None:
                continue

            result.amount_received = amount
            result.evidence_method = strategy.name
            result.permissive = strategy.permissive
            result.evidence['evidenceMethod'] = strategy.name

            if amount >= target.expected_amount:
                result.verified = True
                if strategy.permissive:
                    logger.warning(
                        'Payment {} accepted by permissive fallback: {} >= {}',
                        record.signature, amount, target.expected_amount,
                    )
                else:
                    logger.info(
                        'Payment {} verified via {}: received {} (expected {})',
                        record.signature, strategy.name, amount, target.expected_amount,
                    )
            else:
                result.error = (
                    f'Insufficient payment: received {amount}, expected {target.expected_amount} '
                    f'(evidence: {strategy.name})'
                )
                logger.info('Payment {} mismatch: {}', record.signature, result.error)
            return result

        result.error = 'No transfer to the payment target was found in the transaction'
        logger.info('Payment {} has no matching transfer', record.signature)
        return result
