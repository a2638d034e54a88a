import json
from types import SimpleNamespace
from unittest.mock import MagicMock

from django.test import SimpleTestCase

from gasless.chain import ChainReaderFactory, SolanaChainReader
from gasless.chain.addresses import candidate_token_accounts, derive_token_account, validate_address
from gasless.errors import ChainReaderError, MalformedDataError
from gasless.testing import TOKEN_PROGRAM, new_address, new_signature, rpc_result


def _response(result):
    return SimpleNamespace(value=result, to_json=lambda: json.dumps({'jsonrpc': '2.0', 'result': result, 'id': 1}))


class SolanaChainReaderTests(SimpleTestCase):
    def setUp(self) -> None:
        self.client = MagicMock()
        self.reader = SolanaChainReader({'cluster': 'devnet'}, client=self.client)
        self.signature = new_signature(1)

    def test_prefers_decoded_encoding(self):
        payer = new_address()
        self.client.get_transaction.return_value = _response(rpc_result(account_keys=[{'pubkey': payer}]))

        record = self.reader.get_confirmed_transaction(self.signature)

        self.assertEqual(record.account_keys, [payer])
        self.assertEqual(self.client.get_transaction.call_count, 1)
        self.assertEqual(self.client.get_transaction.call_args.kwargs['encoding'], 'jsonParsed')

    def test_falls_back_to_raw_encoding(self):
        payer = new_address()
        self.client.get_transaction.side_effect = [
            _response(None),
            _response(rpc_result(account_keys=[payer, TOKEN_PROGRAM])),
        ]

        record = self.reader.get_confirmed_transaction(self.signature)

        self.assertEqual(record.account_keys, [payer, TOKEN_PROGRAM])
        self.assertEqual(self.client.get_transaction.call_args.kwargs['encoding'], 'json')

    def test_not_found(self):
        self.client.get_transaction.return_value = _response(None)
        self.assertIsNone(self.reader.get_confirmed_transaction(self.signature))

    def test_rpc_failure_is_transient(self):
        self.client.get_transaction.side_effect = ConnectionError('reset')

        with self.assertRaises(ChainReaderError) as ctx:
            self.reader.get_confirmed_transaction(self.signature)
        self.assertTrue(ctx.exception.retryable)

    def test_invalid_signature(self):
        with self.assertRaises(MalformedDataError):
            self.reader.get_confirmed_transaction('not-a-signature')

    def test_explorer_url(self):
        self.assertEqual(
            self.reader.get_explorer_url('abc'),
            'https://solscan.io/tx/abc?cluster=devnet',
        )
        mainnet = SolanaChainReader({'cluster': 'mainnet-beta'})
        self.assertEqual(mainnet.get_explorer_url('abc'), 'https://solscan.io/tx/abc')


class ChainReaderFactoryTests(SimpleTestCase):
    def test_create_merges_network_defaults(self):
        reader = ChainReaderFactory.create('Solana-Devnet', {'rpc_url': '', 'fee_payer_private_key': ''})

        self.assertIsInstance(reader, SolanaChainReader)
        self.assertEqual(reader.config['cluster'], 'devnet')
        self.assertEqual(reader.config['rpc_url'], 'https://api.devnet.solana.com')

    def test_unsupported_network(self):
        with self.assertRaises(ValueError):
            ChainReaderFactory.create('base')

    def test_supported_networks(self):
        self.assertIn('solana', ChainReaderFactory.get_supported_networks())


class AddressTests(SimpleTestCase):
    def test_validate_address(self):
        self.assertTrue(validate_address(new_address()))
        self.assertFalse(validate_address('0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913'))
        self.assertFalse(validate_address(''))

    def test_candidate_accounts_cover_both_token_programs(self):
        owner, mint = new_address(), new_address()

        candidates = candidate_token_accounts(owner, mint)

        self.assertEqual(len(candidates), 2)
        self.assertIn(derive_token_account(owner, mint), candidates)
