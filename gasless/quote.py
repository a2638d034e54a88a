"""
Payment quotes: where to send how much of which token.
"""
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Optional, Union

from django.conf import settings

from gasless.chain.addresses import derive_token_account, validate_address
from gasless.chain.factory import NETWORK_DEFAULTS
from gasless.errors import ConfigurationError


@dataclass(frozen=True)
class PaymentQuote:
    destination_wallet: str
    destination_token_account: str
    token_id: str
    amount_smallest_units: int
    amount_major_units: Decimal
    decimals: int
    network: str
    cluster: str

    def to_dict(self) -> dict:
        return {
            'destinationWallet': self.destination_wallet,
            'destinationTokenAccount': self.destination_token_account,
            'tokenId': self.token_id,
            'amountSmallestUnits': self.amount_smallest_units,
            'amountMajorUnits': str(self.amount_major_units),
            'decimals': self.decimals,
            'network': self.network,
            'cluster': self.cluster,
            'message': 'Send the token amount to the destination token account to buy gasless credit',
        }


def to_smallest_units(amount: Decimal, decimals: int) -> int:
    """Major units -> integer smallest units, truncating sub-unit dust."""
    scaled = (amount * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN)
    return int(scaled)


def to_major_units(amount: int, decimals: int) -> Decimal:
    return Decimal(amount) / (Decimal(10) ** decimals)


class QuoteGenerator:
    """Deterministic quote from configuration; no network calls."""

    def __init__(
        self,
        recipient_wallet: str,
        price: Union[Decimal, str, None],
        network: str = 'solana',
        token_mint: Optional[str] = None,
        decimals: int = 6,
    ):
        network_defaults = NETWORK_DEFAULTS.get((network or '').lower().strip())
        if network_defaults is None:
            raise ConfigurationError(f'Unsupported network: {network}')
        if not recipient_wallet:
            raise ConfigurationError('GASLESS_RECIPIENT_WALLET is not configured.')
        if not validate_address(recipient_wallet):
            raise ConfigurationError(f'Invalid recipient wallet address: {recipient_wallet}')
        if price in (None, ''):
            raise ConfigurationError('GASLESS_PRICE is not configured.')
        try:
            price_value = Decimal(str(price))
        except InvalidOperation as exc:
            raise ConfigurationError(f'Invalid GASLESS_PRICE: {price}') from exc
        if not price_value.is_finite() or price_value <= 0:
            raise ConfigurationError('GASLESS_PRICE must be a positive amount.')
        if decimals < 0:
            raise ConfigurationError('Token decimals must not be negative.')

        mint = token_mint or network_defaults['token_mint']
        if not validate_address(mint):
            raise ConfigurationError(f'Invalid token mint address: {mint}')

        amount = to_smallest_units(price_value, decimals)
        if amount <= 0:
            raise ConfigurationError(
                f'GASLESS_PRICE {price_value} is below the smallest unit of a {decimals}-decimal token.'
            )

        self.recipient_wallet = recipient_wallet
        self.network = network.lower().strip()
        self.cluster = network_defaults['cluster']
        self.token_mint = mint
        self.decimals = decimals
        self.price = price_value
        self.amount_smallest_units = amount

    @classmethod
    def from_settings(cls) -> 'QuoteGenerator':
        return cls(
            recipient_wallet=getattr(settings, 'GASLESS_RECIPIENT_WALLET', ''),
            price=getattr(settings, 'GASLESS_PRICE', None),
            network=getattr(settings, 'GASLESS_NETWORK', 'solana'),
            token_mint=getattr(settings, 'GASLESS_TOKEN_MINT', '') or None,
            decimals=getattr(settings, 'GASLESS_TOKEN_DECIMALS', 6),
        )

    def quote(self) -> PaymentQuote:
        return PaymentQuote(
            destination_wallet=self.recipient_wallet,
            destination_token_account=derive_token_account(self.recipient_wallet, self.token_mint),
            token_id=self.token_mint,
            amount_smallest_units=self.amount_smallest_units,
            amount_major_units=to_major_units(self.amount_smallest_units, self.decimals),
            decimals=self.decimals,
            network=self.network,
            cluster=self.cluster,
        )
