from django.test import SimpleTestCase

from gasless.chain.addresses import derive_token_account
from gasless.chain.records import TransactionRecord
from gasless.testing import (
    TOKEN_PROGRAM,
    new_address,
    rpc_result,
    token_balance,
    transfer_checked_data,
    transfer_data,
)
from gasless.verification.strategies import (
    PaymentTarget,
    balance_table_scan,
    build_strategies,
    decoded_instruction_inspection,
    derived_account_match,
    direct_account_match,
    inner_instruction_inspection,
    log_parsing,
    permissive_fallback,
)


class StrategyTests(SimpleTestCase):
    def setUp(self) -> None:
        self.payer = new_address()
        self.source = new_address()
        self.recipient = new_address()
        self.mint = new_address()
        self.ata = derive_token_account(self.recipient, self.mint)
        self.target = PaymentTarget(mint=self.mint, expected_amount=300, owner=self.recipient, token_account=self.ata)

    def _record(self, **kwargs) -> TransactionRecord:
        kwargs.setdefault('account_keys', [self.payer, self.source, self.ata, TOKEN_PROGRAM])
        return TransactionRecord.from_rpc('sig', rpc_result(**kwargs))

    def test_direct_account_match_reads_balance_delta(self):
        record = self._record(
            pre_token_balances=[token_balance(2, self.mint, 1_000_000, owner=self.recipient)],
            post_token_balances=[token_balance(2, self.mint, 1_000_300, owner=self.recipient)],
        )
        self.assertEqual(direct_account_match(record, self.target), 300)

    def test_new_token_account_counts_from_zero(self):
        record = self._record(post_token_balances=[token_balance(2, self.mint, 300)])
        self.assertEqual(direct_account_match(record, self.target), 300)

    def test_direct_account_match_ignores_other_mints(self):
        record = self._record(
            pre_token_balances=[token_balance(2, new_address(), 0)],
            post_token_balances=[token_balance(2, new_address(), 300)],
        )
        self.assertIsNone(direct_account_match(record, self.target))

    def test_derived_account_match_when_only_owner_is_known(self):
        target = PaymentTarget(mint=self.mint, expected_amount=300, owner=self.recipient, token_account=self.recipient)
        record = self._record(
            pre_token_balances=[token_balance(2, self.mint, 10)],
            post_token_balances=[token_balance(2, self.mint, 310)],
        )

        self.assertIsNone(direct_account_match(record, target))
        self.assertEqual(derived_account_match(record, target), 300)

    def test_balance_table_scan_matches_owner_without_key_index(self):
        record = self._record(
            account_keys=[self.payer, self.source, TOKEN_PROGRAM],
            pre_token_balances=[token_balance(5, self.mint, 1_000_000, owner=self.recipient)],
            post_token_balances=[token_balance(5, self.mint, 1_000_300, owner=self.recipient)],
        )

        self.assertIsNone(direct_account_match(record, self.target))
        self.assertIsNone(derived_account_match(record, self.target))
        self.assertEqual(balance_table_scan(record, self.target), 300)

    def test_log_parsing_only_trusts_token_program_lines(self):
        other_program = new_address()
        record = self._record(
            log_messages=[
                f'Program {other_program} invoke [1]',
                f'Program log: transfer amount: 999999 to {self.ata}',
                f'Program {TOKEN_PROGRAM} invoke [2]',
                'Program log: Instruction: Transfer',
                f'Program log: Transfer amount: 300 to {self.ata}',
                f'Program {TOKEN_PROGRAM} success',
                f'Program {other_program} success',
            ],
        )
        self.assertEqual(log_parsing(record, self.target), 300)

    def test_log_parsing_without_mention_returns_none(self):
        record = self._record(
            log_messages=[
                f'Program {TOKEN_PROGRAM} invoke [1]',
                f'Program log: Transfer amount: 300 to {new_address()}',
                f'Program {TOKEN_PROGRAM} success',
            ],
        )
        self.assertIsNone(log_parsing(record, self.target))

    def test_inner_instruction_inspection_sums_cpi_transfers(self):
        record = self._record(
            inner_instructions=[
                {
                    'index': 0,
                    'instructions': [
                        {'programIdIndex': 3, 'accounts': [1, 2, 0], 'data': transfer_data(100)},
                        {'programIdIndex': 3, 'accounts': [1, 2, 0], 'data': transfer_data(200)},
                    ],
                },
            ],
        )
        self.assertEqual(inner_instruction_inspection(record, self.target), 300)

    def test_v0_target_from_lookup_table_is_found(self):
        record = self._record(
            account_keys=[self.payer, self.source, TOKEN_PROGRAM],
            loaded_addresses={'writable': [self.ata], 'readonly': []},
            version=0,
            pre_token_balances=[token_balance(3, self.mint, 1_000_000, owner=self.recipient)],
            post_token_balances=[token_balance(3, self.mint, 1_000_300, owner=self.recipient)],
            inner_instructions=[
                {
                    'index': 0,
                    'instructions': [
                        {'programIdIndex': 2, 'accounts': [1, 3, 0], 'data': transfer_data(300)},
                    ],
                },
            ],
        )

        self.assertEqual(record.account_index(self.ata), 3)
        self.assertEqual(direct_account_match(record, self.target), 300)
        self.assertEqual(inner_instruction_inspection(record, self.target), 300)

    def test_inner_instruction_inspection_checks_transfer_checked_mint(self):
        other_mint = new_address()
        record = self._record(
            account_keys=[self.payer, self.source, self.ata, TOKEN_PROGRAM, other_mint],
            instructions=[
                {'programIdIndex': 3, 'accounts': [1, 4, 2, 0], 'data': transfer_checked_data(300)},
            ],
        )
        self.assertIsNone(inner_instruction_inspection(record, self.target))

    def test_decoded_instruction_inspection(self):
        record = self._record(
            account_keys=[{'pubkey': key} for key in (self.payer, self.source, self.ata, TOKEN_PROGRAM)],
            instructions=[
                {
                    'program': 'spl-token',
                    'programId': TOKEN_PROGRAM,
                    'parsed': {
                        'type': 'transferChecked',
                        'info': {
                            'source': self.source,
                            'destination': self.ata,
                            'mint': self.mint,
                            'tokenAmount': {'amount': '300', 'decimals': 6},
                        },
                    },
                },
            ],
        )
        self.assertEqual(decoded_instruction_inspection(record, self.target), 300)

    def test_permissive_fallback_is_opt_in(self):
        stranger = new_address()
        record = self._record(
            account_keys=[self.payer, self.source, stranger, TOKEN_PROGRAM],
            pre_token_balances=[token_balance(2, self.mint, 0)],
            post_token_balances=[token_balance(2, self.mint, 500)],
        )

        self.assertTrue(all(strategy(record, self.target) is None for strategy in build_strategies(False)))
        self.assertEqual(permissive_fallback(record, self.target), 500)
        self.assertEqual(build_strategies(True)[-1].name, 'permissive_fallback')
        self.assertTrue(build_strategies(True)[-1].permissive)

    def test_permissive_fallback_ignores_failed_transactions(self):
        record = self._record(
            pre_token_balances=[token_balance(2, self.mint, 0)],
            post_token_balances=[token_balance(2, self.mint, 500)],
            err={'InstructionError': [0, 'Custom']},
        )
        self.assertIsNone(permissive_fallback(record, self.target))
