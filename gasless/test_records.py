from django.test import SimpleTestCase

from gasless.chain.records import TransactionRecord
from gasless.errors import MalformedDataError
from gasless.testing import (
    TOKEN_PROGRAM,
    new_address,
    rpc_result,
    token_balance,
    transfer_checked_data,
    transfer_data,
)


class TransactionRecordTests(SimpleTestCase):
    def setUp(self) -> None:
        self.payer = new_address()
        self.source = new_address()
        self.destination = new_address()
        self.mint = new_address()

    def test_legacy_raw_transaction(self):
        result = rpc_result(
            account_keys=[self.payer, self.source, self.destination, TOKEN_PROGRAM],
            instructions=[{'programIdIndex': 3, 'accounts': [1, 2, 0], 'data': transfer_data(300)}],
            pre_token_balances=[token_balance(2, self.mint, 1_000_000)],
            post_token_balances=[token_balance(2, self.mint, 1_000_300)],
            log_messages=[f'Program {TOKEN_PROGRAM} invoke [1]'],
        )

        record = TransactionRecord.from_rpc('sig', result)

        self.assertTrue(record.succeeded)
        self.assertFalse(record.is_versioned)
        self.assertEqual(record.account_keys[2], self.destination)
        ix = record.instructions[0]
        self.assertEqual(ix.program_id, TOKEN_PROGRAM)
        self.assertEqual(ix.accounts, [self.source, self.destination, self.payer])
        self.assertEqual(ix.data[0], 3)
        self.assertEqual(record.post_token_balances[0].account, self.destination)
        self.assertEqual(record.post_token_balances[0].amount, 1_000_300)

    def test_v0_raw_transaction_resolves_lookup_table_accounts(self):
        looked_up = new_address()
        readonly = new_address()
        result = rpc_result(
            account_keys=[self.payer, self.source, TOKEN_PROGRAM],
            instructions=[
                {'programIdIndex': 2, 'accounts': [1, 4, 3, 0], 'data': transfer_checked_data(300)},
            ],
            pre_token_balances=[token_balance(3, self.mint, 0)],
            post_token_balances=[token_balance(3, self.mint, 300)],
            loaded_addresses={'writable': [looked_up], 'readonly': [readonly]},
            version=0,
        )

        record = TransactionRecord.from_rpc('sig', result)

        self.assertTrue(record.is_versioned)
        self.assertEqual(record.account_keys, [self.payer, self.source, TOKEN_PROGRAM, looked_up, readonly])
        self.assertEqual(record.instructions[0].accounts, [self.source, readonly, looked_up, self.payer])
        self.assertEqual(record.post_token_balances[0].account, looked_up)

    def test_parsed_transaction(self):
        result = rpc_result(
            account_keys=[
                {'pubkey': self.payer, 'signer': True, 'writable': True},
                {'pubkey': self.destination, 'signer': False, 'writable': True},
            ],
            instructions=[
                {
                    'program': 'spl-token',
                    'programId': TOKEN_PROGRAM,
                    'parsed': {
                        'type': 'transfer',
                        'info': {'source': self.source, 'destination': self.destination, 'amount': '300'},
                    },
                },
                {'program': 'spl-memo', 'programId': new_address(), 'parsed': 'hello'},
            ],
        )

        record = TransactionRecord.from_rpc('sig', result)

        self.assertEqual(record.account_keys, [self.payer, self.destination])
        self.assertEqual(record.instructions[0].parsed['info']['amount'], '300')
        self.assertEqual(record.instructions[1].parsed, {'type': None, 'info': 'hello'})

    def test_inner_instructions_keep_parent_index(self):
        result = rpc_result(
            account_keys=[self.payer, self.source, self.destination, TOKEN_PROGRAM],
            inner_instructions=[
                {'index': 0, 'instructions': [{'programIdIndex': 3, 'accounts': [1, 2, 0], 'data': transfer_data(5)}]},
            ],
        )

        record = TransactionRecord.from_rpc('sig', result)

        self.assertEqual(len(record.inner_instructions), 1)
        self.assertTrue(record.inner_instructions[0].is_inner)
        self.assertEqual(record.inner_instructions[0].parent_index, 0)

    def test_failed_transaction_is_not_succeeded(self):
        result = rpc_result(account_keys=[self.payer], err={'InstructionError': [0, 'Custom']})
        self.assertFalse(TransactionRecord.from_rpc('sig', result).succeeded)

    def test_balance_index_outside_key_list_is_kept(self):
        result = rpc_result(
            account_keys=[self.payer],
            post_token_balances=[token_balance(7, self.mint, 10, owner=self.destination)],
        )

        balance = TransactionRecord.from_rpc('sig', result).post_token_balances[0]

        self.assertIsNone(balance.account)
        self.assertEqual(balance.owner, self.destination)

    def test_malformed_shapes(self):
        cases = {
            'not an object': ['nope'],
            'missing meta': {'transaction': {'message': {'accountKeys': [self.payer]}}},
            'no account keys': rpc_result(account_keys=[]),
            'index out of range': rpc_result(
                account_keys=[self.payer, TOKEN_PROGRAM],
                instructions=[{'programIdIndex': 1, 'accounts': [9], 'data': transfer_data(1)}],
            ),
            'bad base58 data': rpc_result(
                account_keys=[self.payer, TOKEN_PROGRAM],
                instructions=[{'programIdIndex': 1, 'accounts': [0], 'data': '0OIl'}],
            ),
            'non-integer amount': rpc_result(
                account_keys=[self.payer],
                post_token_balances=[
                    {'accountIndex': 0, 'mint': self.mint, 'uiTokenAmount': {'amount': '1.5'}},
                ],
            ),
            'mixed key types': rpc_result(account_keys=[self.payer, {'pubkey': self.source}]),
        }
        for name, result in cases.items():
            with self.subTest(name):
                with self.assertRaises(MalformedDataError) as ctx:
                    TransactionRecord.from_rpc('sig', result)
                self.assertEqual(ctx.exception.signature, 'sig')
