from functools import lru_cache
from typing import Optional, Tuple

from solders.pubkey import Pubkey

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdQxr7K5bhJyGN9L5i1sKt6xtWuyjJq4dz"


@lru_cache(maxsize=4096)
def associated_token_address(
    wallet: str, mint: str, token_program: str = TOKEN_PROGRAM_ID
) -> Optional[str]:
    """
    Derive the associated token account PDA for (wallet, mint).
    Returns None when either input is not a valid base58 public key.
    """
    try:
        owner = Pubkey.from_string(wallet)
        mint_key = Pubkey.from_string(mint)
        program = Pubkey.from_string(token_program)
    except ValueError:
        return None
    seeds = [bytes(owner), bytes(program), bytes(mint_key)]
    pda, _ = Pubkey.find_program_address(seeds, Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID))
    return str(pda)


def associated_token_addresses(wallet: str, mint: str) -> Tuple[str, ...]:
    candidates = (
        associated_token_address(wallet, mint, TOKEN_PROGRAM_ID),
        associated_token_address(wallet, mint, TOKEN_2022_PROGRAM_ID),
    )
    return tuple(c for c in candidates if c)


def is_owned_token_account(wallet: str, owner_account: str, token_account: str, mint: str) -> bool:
    if owner_account and owner_account == wallet:
        return True
    if not token_account:
        return False
    return token_account in associated_token_addresses(wallet, mint)
