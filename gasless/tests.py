from unittest.mock import patch

from django.conf import settings
from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from django.urls import reverse

from gasless.chain.factory import USDC_DEVNET_MINT
from gasless.errors import SubmissionError
from gasless.ledger import CreditLedger
from gasless.models import Payment, SponsoredTransaction, UserWallet
from gasless.quote import QuoteGenerator
from gasless.sponsorship import SponsorshipAccountant
from gasless.submitters import SubmissionReceipt, TransactionSubmitter
from gasless.testing import (
    TOKEN_PROGRAM,
    FakeChainReader,
    new_address,
    new_signature,
    rpc_result,
    token_balance,
    x402_payment_header,
)


class StubSubmitter(TransactionSubmitter):
    def __init__(self, signature=None, error=None):
        self.signature = signature
        self.error = error

    def submit(self, operation, signer_context):
        if self.error is not None:
            raise self.error
        return SubmissionReceipt(signature=self.signature, fee_paid=5000)


class GaslessViewTests(TestCase):
    def setUp(self) -> None:
        self.user = get_user_model().objects.create_user('alice', 'alice@example.com', 'pw')
        self.wallet = UserWallet.objects.create(user=self.user, address=new_address(), network='solana-devnet')
        self.quote = QuoteGenerator.from_settings().quote()
        self.reader = FakeChainReader()
        patcher = patch('gasless.services.get_chain_reader', return_value=self.reader)
        patcher.start()
        self.addCleanup(patcher.stop)

    def _paid(self, signature: str, amount: int) -> None:
        self.reader.results[signature] = rpc_result(
            account_keys=[self.wallet.address, new_address(), self.quote.destination_token_account, TOKEN_PROGRAM],
            pre_token_balances=[token_balance(2, USDC_DEVNET_MINT, 1_000_000, owner=settings.GASLESS_RECIPIENT_WALLET)],
            post_token_balances=[
                token_balance(2, USDC_DEVNET_MINT, 1_000_000 + amount, owner=settings.GASLESS_RECIPIENT_WALLET)
            ],
        )

    def _record(self, signature: str, user='alice@example.com'):
        return self.client.post(
            reverse('gasless:record-payment'),
            data={'userId': user, 'signature': signature},
            content_type='application/json',
        )

    def test_quote(self):
        response = self.client.get(reverse('gasless:quote'))

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['payment']['amountSmallestUnits'], 300)
        self.assertEqual(body['payment']['tokenId'], USDC_DEVNET_MINT)
        self.assertEqual(body['accepts'][0]['payTo'], self.quote.destination_token_account)

    @override_settings(GASLESS_RECIPIENT_WALLET='')
    def test_quote_without_configuration(self):
        response = self.client.get(reverse('gasless:quote'))

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()['errorType'], 'configuration_error')

    def test_record_payment_credits_user_once(self):
        signature = new_signature(1)
        self._paid(signature, 300)

        first = self._record(signature)
        calls_after_first = len(self.reader.calls)
        second = self._record(signature)

        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()['totalCredit'], 300)
        self.assertEqual(first.json()['payment']['evidenceMethod'], 'direct_account_match')
        self.assertEqual(second.status_code, 200)
        self.assertEqual(second.json()['totalCredit'], 300)
        self.assertEqual(len(self.reader.calls), calls_after_first)
        self.assertEqual(Payment.objects.get().source_address, self.wallet.address)

    def test_underpayment_is_rejected_and_kept_for_audit(self):
        signature = new_signature(2)
        self._paid(signature, 200)

        response = self._record(signature)

        self.assertEqual(response.status_code, 422)
        body = response.json()
        self.assertFalse(body['success'])
        self.assertEqual(body['amountReceived'], 200)
        self.assertEqual(body['expectedAmount'], 300)
        payment = Payment.objects.get(signature=signature)
        self.assertEqual(payment.status, Payment.Status.FAILED)
        self.assertEqual(payment.credit_remaining, 0)

    def test_unconfirmed_payment_can_be_retried(self):
        signature = new_signature(3)

        pending = self._record(signature)
        self._paid(signature, 300)
        confirmed = self._record(signature)

        self.assertEqual(pending.status_code, 202)
        self.assertTrue(pending.json()['retryable'])
        self.assertEqual(confirmed.status_code, 200)
        self.assertEqual(Payment.objects.get(signature=signature).status, Payment.Status.VERIFIED)

    def test_signature_of_another_user(self):
        signature = new_signature(4)
        self._paid(signature, 300)
        get_user_model().objects.create_user('bob', 'bob@example.com', 'pw')
        self._record(signature)

        response = self._record(signature, user='bob@example.com')

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['errorType'], 'duplicate_signature')

    def test_invalid_body(self):
        response = self.client.post(
            reverse('gasless:record-payment'),
            data={'userId': 'alice@example.com', 'signature': 'short'},
            content_type='application/json',
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['details'][0]['field'], 'signature')

    def test_unknown_and_inactive_users(self):
        self.assertEqual(self._record(new_signature(5), user='nobody@example.com').status_code, 404)

        self.user.is_active = False
        self.user.save()
        self.assertEqual(self._record(new_signature(5)).status_code, 403)

    def test_credit_and_history(self):
        ledger = CreditLedger()
        ledger.record_payment(self.user, new_signature(6), 300, {'network': 'solana-devnet'})
        ledger.record_payment(self.user, new_signature(7), 500, {'network': 'solana-devnet'})

        credit = self.client.get(reverse('gasless:credit', args=['alice']))
        history = self.client.get(reverse('gasless:payment-history', args=[str(self.user.pk)]), {'limit': 1})
        bad_limit = self.client.get(reverse('gasless:payment-history', args=['alice']), {'limit': 'x'})

        self.assertEqual(credit.status_code, 200)
        self.assertEqual(credit.json()['totalCredit'], 800)
        self.assertEqual(len(credit.json()['payments']), 2)
        self.assertEqual(history.json()['count'], 1)
        self.assertEqual(history.json()['payments'][0]['signature'], new_signature(7))
        self.assertEqual(bad_limit.status_code, 400)

    def _sponsor(self, submitter):
        accountant = SponsorshipAccountant(
            ledger=CreditLedger(),
            submitter=submitter,
            quote_generator=QuoteGenerator.from_settings(),
        )
        with patch('gasless.views.services.get_sponsorship_accountant', return_value=accountant):
            return self.client.post(
                reverse('gasless:sponsor'),
                data={'userId': 'alice', 'transaction': 'AQID', 'category': 'transfer'},
                content_type='application/json',
            )

    def test_sponsor(self):
        CreditLedger().record_payment(self.user, new_signature(8), 300, {'network': 'solana-devnet'})

        response = self._sponsor(StubSubmitter(signature=new_signature(9)))

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['remainingCredit'], 0)
        self.assertEqual(body['sponsoredTransaction']['category'], 'TRANSFER')
        self.assertEqual(body['sponsoredTransaction']['status'], SponsoredTransaction.Status.CONFIRMED)

    def test_sponsor_without_credit(self):
        response = self._sponsor(StubSubmitter(signature=new_signature(9)))

        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.json()['required'], 300)

    def test_sponsor_submission_failure(self):
        CreditLedger().record_payment(self.user, new_signature(8), 300, {'network': 'solana-devnet'})

        response = self._sponsor(StubSubmitter(error=SubmissionError('node unavailable')))

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()['sponsoredTransaction']['status'], SponsoredTransaction.Status.FAILED)
        self.assertEqual(response.json()['remainingCredit'], 0)

    def test_x402_payload_check_from_header(self):
        header = x402_payment_header(self.quote.destination_token_account, USDC_DEVNET_MINT, 300)

        response = self.client.post(reverse('gasless:x402-verify'), headers={'X-Payment': header})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['isValid'])
        self.assertEqual(body['payment']['amount'], 300)
        self.assertFalse(Payment.objects.exists())

    def test_x402_payload_check_underpayment_from_body(self):
        header = x402_payment_header(self.quote.destination_token_account, USDC_DEVNET_MINT, 100)

        response = self.client.post(
            reverse('gasless:x402-verify'),
            data={'paymentHeader': header},
            content_type='application/json',
        )

        self.assertEqual(response.status_code, 422)
        body = response.json()
        self.assertFalse(body['isValid'])
        self.assertEqual(body['invalidReason'], 'Found transfer of 100, expected 300')
        self.assertEqual(body['amountReceived'], 100)

    def test_x402_payload_check_requires_a_payload(self):
        missing = self.client.post(reverse('gasless:x402-verify'), data={}, content_type='application/json')
        garbage = self.client.post(reverse('gasless:x402-verify'), headers={'X-Payment': 'not base64!'})

        self.assertEqual(missing.status_code, 400)
        self.assertEqual(missing.json()['errorType'], 'validation_error')
        self.assertEqual(garbage.status_code, 400)
        self.assertEqual(garbage.json()['errorType'], 'invalid_payment_payload')

    def test_home(self):
        response = self.client.get(reverse('home'))

        self.assertEqual(response.status_code, 200)
        self.assertContains(response, '/gasless/x402/verify')

    def test_health(self):
        response = self.client.get(reverse('health'))
        self.assertEqual(response.json(), {'status': 'ok'})
