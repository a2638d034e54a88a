"""
Solana program ids and token-account derivation helpers.
"""
from typing import Optional, Union

import base58
from solders.pubkey import Pubkey
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address


TOKEN_2022_PROGRAM_ID = Pubkey.from_string("TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb")
TOKEN_PROGRAM_IDS = {str(TOKEN_PROGRAM_ID), str(TOKEN_2022_PROGRAM_ID)}

# Decoded-instruction program labels used by jsonParsed responses
TOKEN_PROGRAM_LABELS = {'spl-token', 'spl-token-2022'}

PubkeyLike = Union[str, Pubkey]


def validate_address(address: str) -> bool:
    """Validate Solana address format (base58, 32 bytes)."""
    try:
        decoded = base58.b58decode(address)
        return len(decoded) == 32
    except Exception:
        return False


def to_pubkey(value: PubkeyLike) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    return Pubkey.from_string(value)


def derive_token_account(
    owner: PubkeyLike,
    mint: PubkeyLike,
    token_program_id: Optional[PubkeyLike] = None,
) -> str:
    """
    Derive the associated token account for (owner, mint).

    Classic SPL token accounts go through spl's helper; Token-2022 accounts use the
    same seeds with the Token-2022 program id.
    """
    owner_key = to_pubkey(owner)
    mint_key = to_pubkey(mint)
    program_key = to_pubkey(token_program_id) if token_program_id else TOKEN_PROGRAM_ID

    if program_key == TOKEN_PROGRAM_ID:
        return str(get_associated_token_address(owner_key, mint_key))

    address, _ = Pubkey.find_program_address(
        [bytes(owner_key), bytes(program_key), bytes(mint_key)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return str(address)


def candidate_token_accounts(owner: PubkeyLike, mint: PubkeyLike) -> set[str]:
    """All associated token accounts (classic and Token-2022) owner could hold for mint."""
    return {
        derive_token_account(owner, mint, TOKEN_PROGRAM_ID),
        derive_token_account(owner, mint, TOKEN_2022_PROGRAM_ID),
    }
