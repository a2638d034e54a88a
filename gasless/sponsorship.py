"""
Spending credit on sponsored operations.

Credit is reserved (deducted) before the operation is handed to the submitter,
and the SponsoredTransaction row is written in the same database transaction as
the deduction. What happens to that credit when submission fails is decided by
a `RefundPolicy`, and only there.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from loguru import logger

from gasless.errors import InsufficientCreditError, SubmissionError
from gasless.ledger import CreditLedger, CreditUsage
from gasless.models import SponsoredTransaction
from gasless.quote import QuoteGenerator
from gasless.submitters import OperationDescriptor, TransactionSubmitter


class RefundPolicy(ABC):
    """Decides whether credit reserved for a failed submission goes back to the user."""

    name = 'refund_policy'

    @abstractmethod
    def on_submission_failure(
        self,
        ledger: CreditLedger,
        sponsored: SponsoredTransaction,
        usage: CreditUsage,
        error: Optional[Exception] = None,
    ) -> bool:
        """
        Apply the policy; return True if credit was restored.

        `error` is the exception that failed the submission. A `GaslessError`
        carrying a signature means the transaction was broadcast and may still land.
        """
        pass


class KeepConsumedCredit(RefundPolicy):
    """Reserved credit stays consumed when submission fails."""

    name = 'keep_consumed_credit'

    def on_submission_failure(self, ledger, sponsored, usage, error=None) -> bool:
        logger.info(
            'Sponsored transaction {} failed; {} credit stays consumed ({})',
            sponsored.pk, usage.amount, self.name,
        )
        return False


class RefundOnSubmissionError(RefundPolicy):
    """
    Reserved credit is restored to the payments it was taken from, unless the
    transaction was already broadcast.
    """

    name = 'refund_on_submission_error'

    def on_submission_failure(self, ledger, sponsored, usage, error=None) -> bool:
        broadcast_signature = getattr(error, 'signature', None)
        if broadcast_signature:
            logger.warning(
                'Sponsored transaction {} failed after broadcast as {}; {} credit not restored ({})',
                sponsored.pk, broadcast_signature, usage.amount, self.name,
            )
            return False

        ledger.restore_credit(usage.allocations)
        logger.warning(
            'Sponsored transaction {} failed; restored {} credit ({})',
            sponsored.pk, usage.amount, self.name,
        )
        return True


def refund_policy_from_settings() -> RefundPolicy:
    if getattr(settings, 'GASLESS_REFUND_ON_SUBMISSION_FAILURE', False):
        return RefundOnSubmissionError()
    return KeepConsumedCredit()


class SponsorshipAccountant:
    def __init__(
        self,
        ledger: CreditLedger,
        submitter: TransactionSubmitter,
        quote_generator: QuoteGenerator,
        refund_policy: Optional[RefundPolicy] = None,
        explorer_url_for=None,
    ):
        self.ledger = ledger
        self.submitter = submitter
        self.quote_generator = quote_generator
        self.refund_policy = refund_policy or KeepConsumedCredit()
        self.explorer_url_for = explorer_url_for

    def credit_cost(self, operation: OperationDescriptor) -> int:
        """Flat price per operation: the standard payment price."""
        return self.quote_generator.amount_smallest_units

    def sponsor(
        self,
        user,
        operation: OperationDescriptor,
        signer_context: Optional[Dict[str, Any]] = None,
    ) -> SponsoredTransaction:
        """
        Spend credit on one operation and submit it.

        Raises:
            InsufficientCreditError: the user cannot cover the cost; nothing was written
        """
        signer_context = signer_context or {}
        cost = self.credit_cost(operation)

        with transaction.atomic():
            usage = self.ledger.use_credit(user, cost)
            if not usage.success:
                raise InsufficientCreditError(
                    usage.error or 'Insufficient credit.',
                    available=usage.remaining_credit,
                    required=cost,
                )
            sponsored = SponsoredTransaction.objects.create(
                user_id=getattr(user, 'pk', user),
                payment_id=usage.oldest_payment_id,
                category=operation.category,
                credit_used=usage.amount,
                credit_allocations=[allocation.to_dict() for allocation in usage.allocations],
                serialized_transaction=operation.transaction,
                network=self.quote_generator.network,
                status=SponsoredTransaction.Status.PENDING,
            )

        logger.info(
            'Reserved {} credit for sponsored transaction {} (user {})',
            cost, sponsored.pk, sponsored.user_id,
        )

        sponsored.mark_submitted()
        sponsored.save(update_fields=['status', 'updated_at'])

        try:
            receipt = self.submitter.submit(operation, signer_context)
        except SubmissionError as exc:
            self._fail(sponsored, usage, exc.message, exc)
            return sponsored
        except Exception as exc:
            self._fail(sponsored, usage, f'Unexpected submission error: {exc}', exc)
            raise

        explorer_url = receipt.explorer_url
        if not explorer_url and self.explorer_url_for:
            explorer_url = self.explorer_url_for(receipt.signature)

        sponsored.mark_confirmed(receipt.signature, receipt.fee_paid, explorer_url)
        try:
            with transaction.atomic():
                sponsored.save(update_fields=[
                    'status', 'signature', 'fee_paid', 'explorer_url', 'error_message', 'updated_at',
                ])
        except IntegrityError:
            sponsored.signature = None
            self._fail(
                sponsored,
                usage,
                f'External signature {receipt.signature} is already recorded',
                SubmissionError('Signature already recorded', receipt.signature),
            )
            return sponsored

        logger.info(
            'Sponsored transaction {} confirmed: {}', sponsored.pk, receipt.signature
        )
        return sponsored

    def _fail(
        self,
        sponsored: SponsoredTransaction,
        usage: CreditUsage,
        error: str,
        exc: Optional[Exception] = None,
    ) -> None:
        submitted_signature = getattr(exc, 'signature', None)
        sponsored.mark_failed(error, submitted_signature)
        logger.error(
            'Sponsored transaction {} failed: {} (submitted signature: {})',
            sponsored.pk, error, submitted_signature,
        )
        sponsored.credit_refunded = self.refund_policy.on_submission_failure(
            self.ledger, sponsored, usage, exc
        )
        sponsored.save(update_fields=[
            'status', 'signature', 'submitted_signature', 'error_message', 'credit_refunded', 'updated_at',
        ])
