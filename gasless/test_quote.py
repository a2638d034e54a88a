from decimal import Decimal

from django.test import SimpleTestCase, override_settings
from spl.token.instructions import get_associated_token_address

from gasless.chain.addresses import to_pubkey
from gasless.chain.factory import USDC_DEVNET_MINT, USDC_MAINNET_MINT
from gasless.errors import ConfigurationError
from gasless.quote import QuoteGenerator, to_major_units, to_smallest_units
from gasless.testing import new_address


class QuoteGeneratorTests(SimpleTestCase):
    def setUp(self) -> None:
        self.wallet = new_address()

    def test_default_price_is_300_smallest_units(self):
        quote = QuoteGenerator(self.wallet, '0.0003', network='solana').quote()

        self.assertEqual(quote.amount_smallest_units, 300)
        self.assertEqual(quote.amount_major_units, Decimal('0.0003'))
        self.assertEqual(quote.token_id, USDC_MAINNET_MINT)
        self.assertEqual(quote.cluster, 'mainnet-beta')

    def test_destination_is_associated_token_account(self):
        quote = QuoteGenerator(self.wallet, '0.0003', network='solana-devnet').quote()

        expected = get_associated_token_address(to_pubkey(self.wallet), to_pubkey(USDC_DEVNET_MINT))
        self.assertEqual(quote.destination_token_account, str(expected))
        self.assertEqual(quote.destination_wallet, self.wallet)

    def test_quote_is_deterministic(self):
        generator = QuoteGenerator(self.wallet, '1.5', network='solana-devnet')
        self.assertEqual(generator.quote(), generator.quote())

    def test_sub_unit_dust_is_truncated(self):
        self.assertEqual(to_smallest_units(Decimal('0.0003009'), 6), 300)
        self.assertEqual(to_major_units(300, 6), Decimal('0.0003'))

    def test_custom_mint_and_decimals(self):
        mint = new_address()
        quote = QuoteGenerator(self.wallet, '2', token_mint=mint, decimals=9).quote()

        self.assertEqual(quote.token_id, mint)
        self.assertEqual(quote.amount_smallest_units, 2_000_000_000)

    def test_to_dict_uses_camel_case(self):
        data = QuoteGenerator(self.wallet, '0.0003').quote().to_dict()

        self.assertEqual(data['amountSmallestUnits'], 300)
        self.assertEqual(data['amountMajorUnits'], '0.0003')
        self.assertIn('destinationTokenAccount', data)

    def test_rejects_invalid_configuration(self):
        cases = [
            ('', '0.0003', 'solana'),
            ('not-a-wallet', '0.0003', 'solana'),
            (self.wallet, None, 'solana'),
            (self.wallet, 'abc', 'solana'),
            (self.wallet, '-1', 'solana'),
            (self.wallet, '0.0000001', 'solana'),
            (self.wallet, '0.0003', 'ethereum'),
        ]
        for wallet, price, network in cases:
            with self.subTest(wallet=wallet, price=price, network=network):
                with self.assertRaises(ConfigurationError):
                    QuoteGenerator(wallet, price, network=network)

    def test_from_settings(self):
        with override_settings(
            GASLESS_RECIPIENT_WALLET=self.wallet,
            GASLESS_PRICE='0.01',
            GASLESS_NETWORK='solana-devnet',
            GASLESS_TOKEN_MINT='',
            GASLESS_TOKEN_DECIMALS=6,
        ):
            generator = QuoteGenerator.from_settings()

        self.assertEqual(generator.amount_smallest_units, 10_000)
        self.assertEqual(generator.token_mint, USDC_DEVNET_MINT)
