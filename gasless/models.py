from typing import Optional

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone


class Payment(models.Model):
    """
    One token payment that buys gasless credit.

    Amounts and credit are integer smallest units of the payment token. Credit
    fields are only written by `gasless.ledger.CreditLedger`.
    """

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        VERIFIED = 'verified', 'Verified'
        FAILED = 'failed', 'Failed'
        CANCELLED = 'cancelled', 'Cancelled'

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='gasless_payments',
        blank=True,
        null=True,
    )
    # Solana signature is base58 (~88 chars).
    signature = models.CharField(max_length=128, unique=True)
    amount = models.BigIntegerField(default=0)
    amount_major = models.DecimalField(max_digits=30, decimal_places=12, default=0)
    credit_remaining = models.BigIntegerField(default=0)
    credit_used = models.BigIntegerField(default=0)
    destination_token_account = models.CharField(max_length=128)
    destination_wallet = models.CharField(max_length=128)
    source_address = models.CharField(max_length=128, blank=True, null=True)
    network = models.CharField(max_length=32)
    token_mint = models.CharField(max_length=128)
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
    )
    evidence_method = models.CharField(max_length=64, blank=True, default='')
    verification_evidence = models.JSONField(blank=True, null=True)
    error_message = models.TextField(blank=True, default='')
    explorer_url = models.CharField(max_length=255, blank=True, default='')
    verified_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'status', 'created_at'], name='payment_user_status_created'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    (Q(status='verified') & Q(credit_remaining=F('amount') - F('credit_used')))
                    | (~Q(status='verified') & Q(credit_remaining=0))
                ),
                name='payment_credit_conserved',
            ),
            models.CheckConstraint(
                condition=Q(credit_remaining__gte=0) & Q(credit_used__gte=0),
                name='payment_credit_non_negative',
            ),
        ]

    def __str__(self) -> str:
        return f'{self.signature} ({self.status})'

    @property
    def is_verified(self) -> bool:
        return self.status == self.Status.VERIFIED

    def to_dict(self) -> dict:
        return {
            'id': self.pk,
            'userId': self.user_id,
            'signature': self.signature,
            'status': self.status,
            'amount': self.amount,
            'amountMajor': str(self.amount_major),
            'creditRemaining': self.credit_remaining,
            'creditUsed': self.credit_used,
            'destinationTokenAccount': self.destination_token_account,
            'destinationWallet': self.destination_wallet,
            'sourceAddress': self.source_address,
            'network': self.network,
            'tokenMint': self.token_mint,
            'evidenceMethod': self.evidence_method or None,
            'errorMessage': self.error_message or None,
            'explorerUrl': self.explorer_url or None,
            'verifiedAt': self.verified_at.isoformat() if self.verified_at else None,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }


class SponsoredTransaction(models.Model):
    """One operation whose network fee was paid by the sponsor out of user credit."""

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        SUBMITTED = 'submitted', 'Submitted'
        CONFIRMED = 'confirmed', 'Confirmed'
        FAILED = 'failed', 'Failed'

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='sponsored_transactions',
    )
    # Oldest payment whose credit funded this operation
    payment = models.ForeignKey(
        Payment,
        on_delete=models.SET_NULL,
        related_name='sponsored_transactions',
        blank=True,
        null=True,
    )
    category = models.CharField(max_length=64, default='USER_TRANSACTION')
    signature = models.CharField(max_length=128, unique=True, blank=True, null=True)
    # Broadcast signature of a submission that later failed; not unique
    submitted_signature = models.CharField(max_length=128, blank=True, null=True)
    fee_paid = models.BigIntegerField(blank=True, null=True)
    credit_used = models.BigIntegerField(default=0)
    credit_allocations = models.JSONField(default=list, blank=True)
    credit_refunded = models.BooleanField(default=False)
    serialized_transaction = models.TextField(blank=True, default='')
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
    )
    error_message = models.TextField(blank=True, default='')
    network = models.CharField(max_length=32)
    explorer_url = models.CharField(max_length=255, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self) -> str:
        return f'{self.category} {self.signature or self.pk} ({self.status})'

    def mark_submitted(self) -> None:
        self.status = self.Status.SUBMITTED

    def mark_confirmed(self, signature: str, fee_paid=None, explorer_url: str = '') -> None:
        self.status = self.Status.CONFIRMED
        self.signature = signature
        self.fee_paid = fee_paid
        self.explorer_url = explorer_url
        self.error_message = ''

    def mark_failed(self, error: str, submitted_signature: Optional[str] = None) -> None:
        self.status = self.Status.FAILED
        self.error_message = error
        if submitted_signature:
            self.submitted_signature = submitted_signature

    def to_dict(self) -> dict:
        return {
            'id': self.pk,
            'userId': self.user_id,
            'paymentId': self.payment_id,
            'category': self.category,
            'signature': self.signature,
            'submittedSignature': self.submitted_signature,
            'status': self.status,
            'feePaid': self.fee_paid,
            'creditUsed': self.credit_used,
            'creditAllocations': self.credit_allocations,
            'creditRefunded': self.credit_refunded,
            'errorMessage': self.error_message or None,
            'network': self.network,
            'explorerUrl': self.explorer_url or None,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }


class UserWallet(models.Model):
    """The on-chain address a user pays from and signs sponsored operations with."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='gasless_wallet',
    )
    address = models.CharField(max_length=128)
    network = models.CharField(max_length=32, default='solana')
    created_at = models.DateTimeField(default=timezone.now)

    def __str__(self) -> str:
        return f'{self.user_id}: {self.address}'
