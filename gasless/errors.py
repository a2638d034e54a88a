"""
Error taxonomy for gasless payment verification, crediting and sponsorship.

Every error keeps the on-chain signature it relates to (when there is one) so a
failed request can still be reconciled against the chain by hand.
"""
from typing import Any, Optional


class GaslessError(Exception):
    """Base error for the gasless credit service."""

    error_type = 'gasless_error'
    retryable = False
    http_status = 500

    def __init__(self, message: str, signature: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.signature = signature

    def to_dict(self) -> dict:
        return {
            'error': self.message,
            'errorType': self.error_type,
            'retryable': self.retryable,
            'signature': self.signature,
        }


class ConfigurationError(GaslessError):
    """Raised when price, recipient, network or signer configuration is missing or invalid."""

    error_type = 'configuration_error'
    http_status = 503


class NotFoundError(GaslessError):
    """Raised when a user or payment is unknown."""

    error_type = 'not_found'
    http_status = 404


class UnconfirmedError(GaslessError):
    """The transaction could not be fetched within the confirmation budget. Safe to retry."""

    error_type = 'unconfirmed'
    retryable = True
    http_status = 202


class VerificationMismatchError(GaslessError):
    """The transaction exists but did not deliver the expected amount."""

    error_type = 'verification_mismatch'
    http_status = 422

    def __init__(
        self,
        message: str,
        signature: Optional[str] = None,
        amount_received: int = 0,
        expected_amount: int = 0,
    ):
        super().__init__(message, signature)
        self.amount_received = amount_received
        self.expected_amount = expected_amount

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['amountReceived'] = self.amount_received
        data['expectedAmount'] = self.expected_amount
        return data


class MalformedDataError(GaslessError):
    """The chain returned a transaction in a shape we cannot interpret."""

    error_type = 'malformed_data'
    http_status = 502

    def __init__(self, message: str, signature: Optional[str] = None, evidence: Any = None):
        super().__init__(message, signature)
        self.evidence = evidence


class InvalidPaymentPayloadError(GaslessError):
    """A client-supplied x402 payment payload could not be decoded."""

    error_type = 'invalid_payment_payload'
    http_status = 400


class DuplicateSignatureError(GaslessError):
    """
    The ledger already holds a payment for this signature.

    The ledger treats this as a no-op and returns the stored row; it only reaches
    callers when the signature belongs to a different user.
    """

    error_type = 'duplicate_signature'
    http_status = 409


class InsufficientCreditError(GaslessError):
    error_type = 'insufficient_credit'
    http_status = 402

    def __init__(self, message: str, available: int = 0, required: int = 0):
        super().__init__(message)
        self.available = available
        self.required = required

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['available'] = self.available
        data['required'] = self.required
        return data


class SubmissionError(GaslessError):
    """The external submitter could not land the sponsored transaction."""

    error_type = 'submission_failed'
    http_status = 502


class ChainReaderError(GaslessError):
    """Transient RPC failure while reading the chain."""

    error_type = 'chain_reader_error'
    retryable = True
    http_status = 503


class LedgerConflictError(GaslessError):
    """A concurrent writer changed a payment row between read and write."""

    error_type = 'ledger_conflict'
    retryable = True
    http_status = 409
