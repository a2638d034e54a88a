"""
Wiring from Django settings, and the verify-then-credit use case.
"""
from typing import Any, Dict

from django.conf import settings
from loguru import logger

from gasless.chain import ChainReaderFactory
from gasless.chain.base import ChainReader
from gasless.errors import ConfigurationError, MalformedDataError, VerificationMismatchError
from gasless.identity import DjangoIdentityResolver, IdentityResolver, ResolvedIdentity
from gasless.ledger import CreditLedger
from gasless.models import Payment
from gasless.quote import QuoteGenerator
from gasless.sponsorship import SponsorshipAccountant, refund_policy_from_settings
from gasless.submitters import SolanaFeePayerSubmitter, TransactionSubmitter
from gasless.verification import PaymentVerifier, RetryPolicy


def _get_chain_config() -> Dict[str, Any]:
    """Chain configuration for the configured network."""
    return {
        'rpc_url': getattr(settings, 'GASLESS_RPC_URL', ''),
        'fee_payer_private_key': getattr(settings, 'GASLESS_FEE_PAYER_PRIVATE_KEY', ''),
    }


def get_network() -> str:
    return getattr(settings, 'GASLESS_NETWORK', 'solana')


def get_quote_generator() -> QuoteGenerator:
    return QuoteGenerator.from_settings()


def get_chain_reader() -> ChainReader:
    try:
        return ChainReaderFactory.create(get_network(), _get_chain_config())
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc


def get_payment_verifier(reader: ChainReader = None) -> PaymentVerifier:
    return PaymentVerifier(
        reader or get_chain_reader(),
        retry_policy=RetryPolicy(
            initial_delay=getattr(settings, 'GASLESS_VERIFY_INITIAL_DELAY_SECONDS', 5),
            max_attempts=getattr(settings, 'GASLESS_VERIFY_MAX_ATTEMPTS', 5),
            retry_delay=getattr(settings, 'GASLESS_VERIFY_RETRY_DELAY_SECONDS', 3),
        ),
        allow_permissive_fallback=getattr(settings, 'GASLESS_ALLOW_PERMISSIVE_FALLBACK', False),
    )


def get_credit_ledger() -> CreditLedger:
    return CreditLedger(decimals=getattr(settings, 'GASLESS_TOKEN_DECIMALS', 6))


def get_identity_resolver() -> IdentityResolver:
    return DjangoIdentityResolver()


def get_transaction_submitter() -> TransactionSubmitter:
    config = _get_chain_config()
    if not config['fee_payer_private_key']:
        raise ConfigurationError('GASLESS_FEE_PAYER_PRIVATE_KEY is not configured.')
    reader_config = get_chain_reader().config
    config['rpc_url'] = config['rpc_url'] or reader_config.get('rpc_url')
    return SolanaFeePayerSubmitter(config)


def get_sponsorship_accountant() -> SponsorshipAccountant:
    reader = get_chain_reader()
    return SponsorshipAccountant(
        ledger=get_credit_ledger(),
        submitter=get_transaction_submitter(),
        quote_generator=get_quote_generator(),
        refund_policy=refund_policy_from_settings(),
        explorer_url_for=reader.get_explorer_url,
    )


def record_verified_payment(
    identity: ResolvedIdentity,
    signature: str,
    quote_generator: QuoteGenerator = None,
    verifier: PaymentVerifier = None,
    ledger: CreditLedger = None,
) -> Payment:
    """
    Verify a submitted payment transaction and turn it into credit.

    Safe to call again for the same signature: an already verified payment is
    returned without touching the chain, and an unconfirmed one is re-checked.

    Raises:
        UnconfirmedError: not visible on-chain yet; retry later
        VerificationMismatchError: the transaction did not pay enough
        MalformedDataError: the transaction could not be interpreted
    """
    quote_generator = quote_generator or get_quote_generator()
    verifier = verifier or get_payment_verifier()
    ledger = ledger or get_credit_ledger()

    quote = quote_generator.quote()
    explorer_url = verifier.reader.get_explorer_url(signature)

    payment = ledger.register_pending(
        identity.user,
        signature,
        quote,
        source_address=identity.payable_address,
        explorer_url=explorer_url,
    )
    if payment.status == Payment.Status.VERIFIED:
        logger.info('Payment {} already verified; returning stored credit', signature)
        return payment
    if payment.status != Payment.Status.PENDING:
        raise VerificationMismatchError(
            payment.error_message or f'Payment is {payment.status}',
            signature,
            amount_received=payment.amount,
            expected_amount=quote.amount_smallest_units,
        )

    try:
        result = verifier.verify(
            signature,
            quote.destination_wallet,
            quote.token_id,
            quote.amount_smallest_units,
            token_account=quote.destination_token_account,
        )
    except MalformedDataError as exc:
        logger.error('Malformed transaction data for {}: {} evidence={}', signature, exc.message, exc.evidence)
        ledger.mark_failed(signature, exc.message, evidence={'raw': exc.evidence})
        raise

    if not result.verified:
        ledger.mark_failed(
            signature,
            result.error or 'Payment verification failed',
            evidence=result.evidence,
            amount_received=result.amount_received,
        )
        raise VerificationMismatchError(
            result.error or 'Payment verification failed',
            signature,
            amount_received=result.amount_received,
            expected_amount=result.expected_amount,
        )

    return ledger.record_payment(
        identity.user,
        signature,
        result.amount_received,
        {
            'decimals': quote.decimals,
            'destination_token_account': quote.destination_token_account,
            'destination_wallet': quote.destination_wallet,
            'source_address': identity.payable_address,
            'network': quote.network,
            'token_mint': quote.token_id,
            'explorer_url': result.explorer_url or explorer_url,
            'evidence_method': result.evidence_method,
            'evidence': result.evidence,
        },
    )
