import base64
import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import base58
from django.test import SimpleTestCase
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0, to_bytes_versioned
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from gasless.errors import ConfigurationError, SubmissionError
from gasless.submitters import OperationDescriptor, SolanaFeePayerSubmitter, load_keypair


class LoadKeypairTests(SimpleTestCase):
    def test_base58_and_json_array(self):
        keypair = Keypair()

        from_base58 = load_keypair(base58.b58encode(bytes(keypair)).decode())
        from_json = load_keypair(json.dumps(list(bytes(keypair))))

        self.assertEqual(from_base58.pubkey(), keypair.pubkey())
        self.assertEqual(from_json.pubkey(), keypair.pubkey())

    def test_invalid_keys(self):
        for secret in ('', 'abc', '[1, 2, 3]'):
            with self.subTest(secret=secret):
                with self.assertRaises(ConfigurationError):
                    load_keypair(secret)


class SolanaFeePayerSubmitterTests(SimpleTestCase):
    def setUp(self) -> None:
        self.fee_payer = Keypair()
        self.user = Keypair()
        self.client = MagicMock()
        self.submitter = SolanaFeePayerSubmitter(
            {'fee_payer_private_key': base58.b58encode(bytes(self.fee_payer)).decode()},
            client=self.client,
        )

    def _operation(self, payer=None, source=None) -> OperationDescriptor:
        ix = transfer(
            TransferParams(
                from_pubkey=(source or self.user).pubkey(),
                to_pubkey=Pubkey.new_unique(),
                lamports=1,
            )
        )
        message = MessageV0.try_compile((payer or self.fee_payer).pubkey(), [ix], [], Hash.default())
        user_signature = self.user.sign_message(to_bytes_versioned(message))
        required = message.header.num_required_signatures
        signatures = [
            user_signature if key == self.user.pubkey() else Signature.default()
            for key in message.account_keys[:required]
        ]
        tx = VersionedTransaction.populate(message, signatures)
        self.message = message
        return OperationDescriptor(transaction=base64.b64encode(bytes(tx)).decode(), category='TRANSFER')

    def _confirmed(self, signature: Signature) -> None:
        self.client.get_fee_for_message.return_value = SimpleNamespace(value=5000)
        self.client.send_raw_transaction.return_value = SimpleNamespace(value=signature)
        self.client.confirm_transaction.return_value = SimpleNamespace(value=[SimpleNamespace(err=None)])

    def test_signs_as_fee_payer_and_submits(self):
        operation = self._operation()
        landed = Signature.new_unique()
        self._confirmed(landed)

        receipt = self.submitter.submit(operation, {'payable_address': str(self.user.pubkey())})

        self.assertEqual(receipt.signature, str(landed))
        self.assertEqual(receipt.fee_paid, 5000)
        sent = VersionedTransaction.from_bytes(self.client.send_raw_transaction.call_args[0][0])
        expected = self.fee_payer.sign_message(to_bytes_versioned(self.message))
        self.assertEqual(sent.signatures[0], expected)

    def test_retries_without_preflight_on_stale_blockhash(self):
        operation = self._operation()
        landed = Signature.new_unique()
        self._confirmed(landed)
        self.client.send_raw_transaction.side_effect = [
            Exception('Blockhash not found'),
            SimpleNamespace(value=landed),
        ]

        receipt = self.submitter.submit(operation, {})

        self.assertEqual(receipt.signature, str(landed))
        self.assertTrue(self.client.send_raw_transaction.call_args.kwargs['opts'].skip_preflight)

    def test_rejects_other_fee_payer(self):
        with self.assertRaisesRegex(SubmissionError, 'Fee payer mismatch'):
            self.submitter.submit(self._operation(payer=self.user), {})

    def test_rejects_fee_payer_in_instructions(self):
        with self.assertRaisesRegex(SubmissionError, 'must not appear'):
            self.submitter.submit(self._operation(source=self.fee_payer), {})

    def test_rejects_transaction_not_signed_by_user_wallet(self):
        stranger = str(Pubkey.new_unique())
        with self.assertRaisesRegex(SubmissionError, 'not signed by user wallet'):
            self.submitter.submit(self._operation(), {'payable_address': stranger})

    def test_rejects_undecodable_transaction(self):
        with self.assertRaisesRegex(SubmissionError, 'deserialize'):
            self.submitter.submit(OperationDescriptor(transaction='not base64!'), {})

    def test_on_chain_failure(self):
        operation = self._operation()
        self._confirmed(Signature.new_unique())
        self.client.confirm_transaction.return_value = SimpleNamespace(value=[SimpleNamespace(err='InstructionError')])

        with self.assertRaisesRegex(SubmissionError, 'failed on-chain') as ctx:
            self.submitter.submit(operation, {})
        self.assertIsNotNone(ctx.exception.signature)
