import base64
import json

from django.test import SimpleTestCase
from solders.keypair import Keypair

from gasless.errors import InvalidPaymentPayloadError, VerificationMismatchError
from gasless.quote import QuoteGenerator
from gasless.testing import new_address, x402_payment_header
from gasless.verification import check_payment_payload, decode_payment_header


def _encode(value) -> str:
    return base64.b64encode(json.dumps(value).encode()).decode()


class PaymentPayloadCheckTests(SimpleTestCase):
    def setUp(self) -> None:
        self.quote = QuoteGenerator(new_address(), '0.0003', network='solana-devnet').quote()
        self.payer = Keypair()

    def _check(self, header: str):
        return check_payment_payload(decode_payment_header(header), self.quote)

    def _header(self, amount=300, destination=None, mint=None, **kwargs) -> str:
        return x402_payment_header(
            destination or self.quote.destination_token_account,
            mint or self.quote.token_id,
            amount,
            payer=self.payer,
            **kwargs,
        )

    def test_transfer_checked_to_quoted_account(self):
        check = self._check(self._header())

        self.assertEqual(check.amount, 300)
        self.assertEqual(check.destination, self.quote.destination_token_account)
        self.assertEqual(check.payer, str(self.payer.pubkey()))
        self.assertEqual(check.x402_version, 1)

    def test_plain_transfer_overpaying_is_accepted(self):
        check = self._check(self._header(amount=500, checked=False))

        self.assertEqual(check.amount, 500)
        self.assertEqual(check.payer, str(self.payer.pubkey()))

    def test_underpayment(self):
        with self.assertRaises(VerificationMismatchError) as ctx:
            self._check(self._header(amount=200))

        self.assertEqual(ctx.exception.amount_received, 200)
        self.assertEqual(ctx.exception.expected_amount, 300)
        self.assertEqual(ctx.exception.message, 'Found transfer of 200, expected 300')

    def test_transfer_to_another_account(self):
        with self.assertRaises(VerificationMismatchError) as ctx:
            self._check(self._header(destination=new_address()))

        self.assertEqual(ctx.exception.amount_received, 0)
        self.assertIn('No token transfer', ctx.exception.message)

    def test_transfer_checked_of_another_mint(self):
        with self.assertRaises(VerificationMismatchError):
            self._check(self._header(mint=new_address()))

    def test_wrong_network(self):
        with self.assertRaises(InvalidPaymentPayloadError):
            self._check(self._header(network='solana'))

    def test_unsupported_scheme(self):
        with self.assertRaises(InvalidPaymentPayloadError):
            check_payment_payload({'scheme': 'upto', 'payload': {}}, self.quote)

    def test_undecodable_headers(self):
        for header in ('not base64!', _encode([1, 2]), base64.b64encode(b'\xff\xfe').decode()):
            with self.subTest(header=header):
                with self.assertRaises(InvalidPaymentPayloadError):
                    decode_payment_header(header)

    def test_missing_or_garbage_transaction(self):
        for payment in (
            {'x402Version': 1, 'payload': {}},
            {'x402Version': 1, 'payload': {'serializedTransaction': base64.b64encode(b'junk').decode()}},
        ):
            with self.subTest(payment=payment):
                with self.assertRaises(InvalidPaymentPayloadError):
                    check_payment_payload(payment, self.quote)
