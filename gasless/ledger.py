"""
Per-user credit ledger.

The ledger is the only writer of `Payment` credit fields. Every mutation runs in
one database transaction; deductions lock the user's verified payments with
`select_for_update()` and apply each decrement as a compare-and-swap update, so
concurrent spenders for the same user are serialized and can never overdraw.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from django.db import IntegrityError, transaction
from django.db.models import F, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone
from loguru import logger

from gasless.errors import DuplicateSignatureError, LedgerConflictError, NotFoundError
from gasless.models import Payment
from gasless.quote import PaymentQuote, to_major_units


@dataclass(frozen=True)
class CreditAllocation:
    payment_id: int
    amount: int

    def to_dict(self) -> dict:
        return {'paymentId': self.payment_id, 'amount': self.amount}


@dataclass
class CreditUsage:
    success: bool
    amount: int
    remaining_credit: int
    allocations: List[CreditAllocation] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def payments_touched(self) -> List[int]:
        return [allocation.payment_id for allocation in self.allocations]

    @property
    def oldest_payment_id(self) -> Optional[int]:
        return self.allocations[0].payment_id if self.allocations else None


@dataclass
class CreditSummary:
    total_credit: int
    payments: List[Payment]

    def to_dict(self) -> dict:
        return {
            'totalCredit': self.total_credit,
            'payments': [payment.to_dict() for payment in self.payments],
        }


def _user_id(user) -> Any:
    return getattr(user, 'pk', user)


class CreditLedger:
    MAX_CONFLICT_RETRIES = 3

    def __init__(self, decimals: int = 6):
        self.decimals = decimals

    def register_pending(
        self,
        user,
        signature: str,
        quote: PaymentQuote,
        source_address: Optional[str] = None,
        explorer_url: str = '',
    ) -> Payment:
        """Create the PENDING row for a submitted payment; returns the stored row if it exists."""
        try:
            with transaction.atomic():
                payment = Payment(
                    user_id=_user_id(user),
                    signature=signature,
                    amount=quote.amount_smallest_units,
                    amount_major=quote.amount_major_units,
                    destination_token_account=quote.destination_token_account,
                    destination_wallet=quote.destination_wallet,
                    source_address=source_address,
                    network=quote.network,
                    token_mint=quote.token_id,
                    status=Payment.Status.PENDING,
                    explorer_url=explorer_url,
                )
                payment.save(force_insert=True)
        except IntegrityError:
            payment = self._get_owned(user, signature)
            logger.debug('Payment {} already registered ({})', signature, payment.status)
            return payment

        logger.info('Pending payment {} registered for user {}', signature, payment.user_id)
        return payment

    def record_payment(
        self,
        user,
        signature: str,
        amount: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Payment:
        """
        Record a verified payment and credit its full amount.

        Idempotent on signature: a PENDING row is promoted exactly once, and any
        other existing row is returned unchanged.

        Raises:
            DuplicateSignatureError: the signature is recorded for another user
        """
        amount = int(amount)
        if amount <= 0:
            raise ValueError('Payment amount must be positive')
        metadata = metadata or {}

        try:
            return self._insert_verified(user, signature, amount, metadata)
        except DuplicateSignatureError:
            return self._promote_pending(user, signature, amount, metadata)

    def _insert_verified(self, user, signature: str, amount: int, metadata: Dict[str, Any]) -> Payment:
        try:
            with transaction.atomic():
                payment = Payment(
                    user_id=_user_id(user),
                    signature=signature,
                    status=Payment.Status.VERIFIED,
                    credit_used=0,
                    **self._verified_fields(amount, metadata),
                )
                payment.save(force_insert=True)
        except IntegrityError as exc:
            raise DuplicateSignatureError('Payment signature already recorded.', signature) from exc

        logger.info(
            'Payment {} recorded and {} credit added for user {}', signature, amount, payment.user_id
        )
        return payment

    def _promote_pending(self, user, signature: str, amount: int, metadata: Dict[str, Any]) -> Payment:
        with transaction.atomic():
            payment = self._get_owned(user, signature, for_update=True)
            if payment.status != Payment.Status.PENDING:
                logger.info(
                    'Payment {} already recorded as {}; returning stored row', signature, payment.status
                )
                return payment

            fields = self._verified_fields(amount, metadata)
            updated = Payment.objects.filter(pk=payment.pk, status=Payment.Status.PENDING).update(
                user_id=_user_id(user),
                status=Payment.Status.VERIFIED,
                credit_used=0,
                updated_at=timezone.now(),
                **fields,
            )
            payment.refresh_from_db()

        if updated:
            logger.info(
                'Pending payment {} verified and {} credit added for user {}',
                signature, amount, payment.user_id,
            )
        return payment

    def _verified_fields(self, amount: int, metadata: Dict[str, Any]) -> Dict[str, Any]:
        decimals = metadata.get('decimals', self.decimals)
        fields: Dict[str, Any] = {
            'amount': amount,
            'amount_major': to_major_units(amount, decimals),
            'credit_remaining': amount,
            'verified_at': timezone.now(),
        }
        for key in (
            'destination_token_account',
            'destination_wallet',
            'source_address',
            'network',
            'token_mint',
            'explorer_url',
            'evidence_method',
        ):
            if metadata.get(key) is not None:
                fields[key] = metadata[key]
        if metadata.get('evidence') is not None:
            fields['verification_evidence'] = metadata['evidence']
        return fields

    def _get_owned(self, user, signature: str, for_update: bool = False) -> Payment:
        queryset = Payment.objects.select_for_update() if for_update else Payment.objects
        payment = queryset.get(signature=signature)
        if payment.user_id is not None and payment.user_id != _user_id(user):
            logger.error(
                'Signature {} is recorded for user {}, rejected for user {}',
                signature, payment.user_id, _user_id(user),
            )
            raise DuplicateSignatureError('Payment signature belongs to another user.', signature)
        return payment

    def mark_failed(
        self,
        signature: str,
        error: str,
        evidence: Optional[Dict[str, Any]] = None,
        amount_received: Optional[int] = None,
    ) -> Payment:
        """Move a PENDING payment to FAILED once; the row is kept for manual audit."""
        fields: Dict[str, Any] = {
            'status': Payment.Status.FAILED,
            'error_message': error,
            'updated_at': timezone.now(),
        }
        if evidence is not None:
            fields['verification_evidence'] = evidence
        if amount_received is not None:
            fields['amount'] = amount_received
            fields['amount_major'] = to_major_units(amount_received, self.decimals)

        with transaction.atomic():
            updated = Payment.objects.filter(signature=signature, status=Payment.Status.PENDING).update(**fields)
            try:
                payment = Payment.objects.get(signature=signature)
            except Payment.DoesNotExist as exc:
                raise NotFoundError('Payment not found.', signature) from exc

        if updated:
            logger.error('Payment {} marked failed: {}', signature, error)
        return payment

    def get_user_credit(self, user) -> int:
        """Sum of remaining credit over the user's verified payments."""
        return Payment.objects.filter(
            user_id=_user_id(user),
            status=Payment.Status.VERIFIED,
        ).aggregate(total=Coalesce(Sum('credit_remaining'), 0))['total']

    def get_credit_summary(self, user) -> CreditSummary:
        payments = list(
            Payment.objects.filter(user_id=_user_id(user), status=Payment.Status.VERIFIED).order_by('-created_at', '-id')
        )
        return CreditSummary(
            total_credit=sum(payment.credit_remaining for payment in payments),
            payments=payments,
        )

    def get_payment_history(self, user, limit: int = 50) -> List[Payment]:
        return list(
            Payment.objects.filter(user_id=_user_id(user)).order_by('-created_at', '-id')[:max(int(limit), 0)]
        )

    def use_credit(self, user, amount_needed: int) -> CreditUsage:
        """
        Deduct `amount_needed` from the user's verified payments, oldest first.

        Either the whole amount is deducted or nothing is; a shortfall is reported
        through `CreditUsage.success` without any write.
        """
        amount_needed = int(amount_needed)
        if amount_needed <= 0:
            raise ValueError('Credit amount must be positive')

        for attempt in range(1, self.MAX_CONFLICT_RETRIES + 1):
            try:
                return self._use_credit_once(user, amount_needed)
            except LedgerConflictError as exc:
                logger.warning(
                    'Credit deduction conflict for user {} (attempt {}/{}): {}',
                    _user_id(user), attempt, self.MAX_CONFLICT_RETRIES, exc.message,
                )
        raise LedgerConflictError('Credit deduction kept conflicting with concurrent writers.')

    def _use_credit_once(self, user, amount_needed: int) -> CreditUsage:
        with transaction.atomic():
            payments = list(
                Payment.objects.select_for_update()
                .filter(user_id=_user_id(user), status=Payment.Status.VERIFIED, credit_remaining__gt=0)
                .order_by('created_at', 'id')
            )
            available = sum(payment.credit_remaining for payment in payments)

            if available < amount_needed:
                logger.info(
                    'Insufficient credit for user {}: available {}, required {}',
                    _user_id(user), available, amount_needed,
                )
                return CreditUsage(
                    success=False,
                    amount=amount_needed,
                    remaining_credit=available,
                    error=f'Insufficient credit. Available: {available}, required: {amount_needed}',
                )

            now = timezone.now()
            to_deduct = amount_needed
            allocations: List[CreditAllocation] = []
            for payment in payments:
                if to_deduct == 0:
                    break
                take = min(payment.credit_remaining, to_deduct)
                updated = Payment.objects.filter(
                    pk=payment.pk,
                    status=Payment.Status.VERIFIED,
                    credit_remaining=payment.credit_remaining,
                    credit_used=payment.credit_used,
                ).update(
                    credit_remaining=F('credit_remaining') - take,
                    credit_used=F('credit_used') + take,
                    updated_at=now,
                )
                if updated != 1:
                    raise LedgerConflictError(f'Payment {payment.pk} changed during deduction', payment.signature)
                allocations.append(CreditAllocation(payment_id=payment.pk, amount=take))
                to_deduct -= take
                logger.info('Deducted {} credit from payment {} for user {}', take, payment.pk, _user_id(user))

        remaining = available - amount_needed
        logger.info('Credit used: {} for user {}. Remaining: {}', amount_needed, _user_id(user), remaining)
        return CreditUsage(
            success=True,
            amount=amount_needed,
            remaining_credit=remaining,
            allocations=allocations,
        )

    def restore_credit(self, allocations: List[CreditAllocation]) -> None:
        """Give back previously deducted credit to the payments it came from."""
        with transaction.atomic():
            now = timezone.now()
            for allocation in allocations:
                updated = Payment.objects.filter(
                    pk=allocation.payment_id,
                    status=Payment.Status.VERIFIED,
                    credit_used__gte=allocation.amount,
                ).update(
                    credit_remaining=F('credit_remaining') + allocation.amount,
                    credit_used=F('credit_used') - allocation.amount,
                    updated_at=now,
                )
                if updated != 1:
                    raise LedgerConflictError(f'Cannot restore {allocation.amount} credit to payment {allocation.payment_id}')
                logger.warning('Restored {} credit to payment {}', allocation.amount, allocation.payment_id)
