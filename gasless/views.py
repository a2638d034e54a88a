"""
HTTP views for gasless credit: quotes, payment recording, balances and sponsorship.
"""
from django.conf import settings
from loguru import logger
from pydantic import ValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from gasless import services
from gasless.errors import GaslessError, NotFoundError
from gasless.schemas import PaymentPayloadRequest, RecordPaymentRequest, SponsorRequest
from gasless.submitters import OperationDescriptor
from gasless.verification import check_payment_payload, decode_payment_header


def _error_response(exc: GaslessError, **extra) -> Response:
    body = {'success': False, **exc.to_dict(), **extra}
    return Response(body, status=exc.http_status)


def _validation_response(exc: ValidationError) -> Response:
    errors = [
        {'field': '.'.join(str(part) for part in error['loc']), 'message': error['msg']}
        for error in exc.errors()
    ]
    return Response(
        {'success': False, 'error': 'Invalid request body.', 'errorType': 'validation_error', 'details': errors},
        status=status.HTTP_400_BAD_REQUEST,
    )


def _inactive_response(user_key) -> Response:
    logger.info('Rejected request for inactive user {}', user_key)
    return Response(
        {'success': False, 'error': 'User account is inactive.', 'errorType': 'inactive_user'},
        status=status.HTTP_403_FORBIDDEN,
    )


class QuoteView(APIView):
    """
    Current payment quote.

    The body also carries an x402-style `accepts` list so payment-aware clients
    can build the transfer without reading our own field names.
    """

    authentication_classes: list = []
    permission_classes: list = []

    def get(self, request, *args, **kwargs):
        try:
            quote = services.get_quote_generator().quote()
        except GaslessError as exc:
            logger.error('Quote unavailable: {}', exc.message)
            return _error_response(exc)

        return Response(
            {
                'success': True,
                'payment': quote.to_dict(),
                'x402Version': 1,
                'accepts': [
                    {
                        'scheme': 'exact',
                        'network': quote.network,
                        'payTo': quote.destination_token_account,
                        'asset': quote.token_id,
                        'maxAmountRequired': str(quote.amount_smallest_units),
                    }
                ],
            },
            status=status.HTTP_200_OK,
        )


class PaymentPayloadCheckView(APIView):
    """
    Check an x402 payment payload before it is sent.

    Confirms that the signed transaction transfers at least the quoted amount to
    the quoted token account. No credit is granted here; the confirmed signature
    still has to be recorded through `POST /gasless/payments`.
    """

    authentication_classes: list = []
    permission_classes: list = []

    def post(self, request, *args, **kwargs):
        data = request.data if isinstance(request.data, dict) else {}
        header = request.headers.get('X-Payment') or data.get('paymentHeader')
        try:
            body = PaymentPayloadRequest.model_validate({'paymentHeader': header})
        except ValidationError as exc:
            return _validation_response(exc)

        try:
            quote = services.get_quote_generator().quote()
            check = check_payment_payload(decode_payment_header(body.payment_header), quote)
        except GaslessError as exc:
            logger.info('x402 payment payload rejected: {}', exc.message)
            return _error_response(exc, isValid=False, invalidReason=exc.message)

        return Response(
            {
                'success': True,
                'isValid': True,
                'invalidReason': None,
                'payer': check.payer,
                'payment': check.to_dict(),
            },
            status=status.HTTP_200_OK,
        )


class RecordPaymentView(APIView):
    """Verify a submitted payment signature and credit it to the user."""

    authentication_classes: list = []
    permission_classes: list = []

    def post(self, request, *args, **kwargs):
        try:
            body = RecordPaymentRequest.model_validate(request.data)
        except ValidationError as exc:
            return _validation_response(exc)

        explorer_url = None
        try:
            identity = services.get_identity_resolver().resolve(body.user)
            if not identity.active:
                return _inactive_response(body.user)

            verifier = services.get_payment_verifier()
            explorer_url = verifier.reader.get_explorer_url(body.signature)
            payment = services.record_verified_payment(identity, body.signature, verifier=verifier)
            credit = services.get_credit_ledger().get_user_credit(identity.user)
        except GaslessError as exc:
            if exc.retryable:
                logger.info('Payment {} not recorded yet: {}', body.signature, exc.message)
            else:
                logger.warning('Payment {} rejected: {}', body.signature, exc.message)
            return _error_response(exc, explorerUrl=explorer_url)

        logger.info('Payment {} recorded for user {}; credit now {}', payment.signature, payment.user_id, credit)
        return Response(
            {
                'success': True,
                'payment': payment.to_dict(),
                'totalCredit': credit,
                'explorerUrl': payment.explorer_url or explorer_url,
            },
            status=status.HTTP_200_OK,
        )


class CreditView(APIView):
    authentication_classes: list = []
    permission_classes: list = []

    def get(self, request, user_key, *args, **kwargs):
        try:
            identity = services.get_identity_resolver().resolve(user_key)
        except NotFoundError as exc:
            return _error_response(exc)

        summary = services.get_credit_ledger().get_credit_summary(identity.user)
        return Response({'success': True, 'userId': identity.user_id, **summary.to_dict()}, status=status.HTTP_200_OK)


class PaymentHistoryView(APIView):
    authentication_classes: list = []
    permission_classes: list = []

    def get(self, request, user_key, *args, **kwargs):
        default_limit = getattr(settings, 'GASLESS_PAYMENT_HISTORY_LIMIT', 50)
        try:
            limit = int(request.query_params.get('limit', default_limit))
        except (TypeError, ValueError):
            return Response(
                {'success': False, 'error': 'limit must be an integer.', 'errorType': 'validation_error'},
                status=status.HTTP_400_BAD_REQUEST,
            )
        if limit < 1:
            return Response(
                {'success': False, 'error': 'limit must be positive.', 'errorType': 'validation_error'},
                status=status.HTTP_400_BAD_REQUEST,
            )

        try:
            identity = services.get_identity_resolver().resolve(user_key)
        except NotFoundError as exc:
            return _error_response(exc)

        payments = services.get_credit_ledger().get_payment_history(identity.user, limit=limit)
        return Response(
            {
                'success': True,
                'userId': identity.user_id,
                'payments': [payment.to_dict() for payment in payments],
                'count': len(payments),
            },
            status=status.HTTP_200_OK,
        )


class SponsorView(APIView):
    """Spend credit to have the sponsor pay the network fee of a user-signed transaction."""

    authentication_classes: list = []
    permission_classes: list = []

    def post(self, request, *args, **kwargs):
        try:
            body = SponsorRequest.model_validate(request.data)
        except ValidationError as exc:
            return _validation_response(exc)

        try:
            identity = services.get_identity_resolver().resolve(body.user)
            if not identity.active:
                return _inactive_response(body.user)

            accountant = services.get_sponsorship_accountant()
            sponsored = accountant.sponsor(
                identity.user,
                OperationDescriptor(transaction=body.transaction, category=body.category),
                signer_context={'user_id': identity.user_id, 'payable_address': identity.payable_address},
            )
        except GaslessError as exc:
            logger.warning('Sponsorship for {} rejected: {}', body.user, exc.message)
            return _error_response(exc)

        credit = services.get_credit_ledger().get_user_credit(identity.user)
        if sponsored.status == sponsored.Status.FAILED:
            return Response(
                {
                    'success': False,
                    'error': sponsored.error_message,
                    'errorType': 'submission_failed',
                    'sponsoredTransaction': sponsored.to_dict(),
                    'remainingCredit': credit,
                },
                status=status.HTTP_502_BAD_GATEWAY,
            )

        return Response(
            {
                'success': True,
                'sponsoredTransaction': sponsored.to_dict(),
                'remainingCredit': credit,
                'explorerUrl': sponsored.explorer_url or None,
            },
            status=status.HTTP_200_OK,
        )
