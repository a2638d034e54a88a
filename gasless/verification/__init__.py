"""
Payment verification against confirmed transactions.
"""
from .payload import PaymentPayloadCheck, check_payment_payload, decode_payment_header
from .strategies import (
    DEFAULT_STRATEGIES,
    PERMISSIVE_FALLBACK,
    PaymentTarget,
    VerificationStrategy,
    build_strategies,
)
from .verifier import PaymentVerifier, RetryPolicy, VerificationResult

__all__ = [
    'DEFAULT_STRATEGIES',
    'PERMISSIVE_FALLBACK',
    'PaymentPayloadCheck',
    'PaymentTarget',
    'PaymentVerifier',
    'RetryPolicy',
    'VerificationResult',
    'VerificationStrategy',
    'build_strategies',
    'check_payment_payload',
    'decode_payment_header',
]
