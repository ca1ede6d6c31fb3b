"""
Tests for token symbol/icon resolution.
"""
import asyncio

from orb_ledger.core.entities.balance import VerifiedToken
from orb_ledger.core.services import TokenResolver
from orb_ledger.infrastructure.gateways.local_mock import LocalMockTokenList

from factories import BONK, SOL, USDC

UNKNOWN = "abcdEFGHjkLMNpqrsTUVwxyz1234567890ABCDEFGHJ"


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


async def test_hardcoded_tokens_need_no_fetch(token_list):
    resolver = TokenResolver(token_list)
    assert await resolver.symbol_for(SOL) == "SOL"
    assert await resolver.symbol_for(USDC) == "USDC"
    assert await resolver.decimals_for(USDC) == 6
    assert token_list.fetch_count == 0


async def test_verified_list_is_fetched_once(token_list):
    resolver = TokenResolver(token_list)

    symbols = await asyncio.gather(*(resolver.symbol_for(UNKNOWN) for _ in range(5)))
    assert symbols == ["ABCD"] * 5
    assert await resolver.icon_for(BONK) == "https://img.example/bonk.png"
    assert await resolver.is_verified(BONK)
    assert not await resolver.is_verified(UNKNOWN)
    assert token_list.fetch_count == 1


async def test_failed_fetch_falls_back_and_retries_after_cooldown():
    clock = FakeClock()
    tokens = LocalMockTokenList(fail=True)
    resolver = TokenResolver(tokens, retry_after=60, clock=clock)

    assert await resolver.symbol_for(UNKNOWN) == "ABCD"
    assert await resolver.icon_for(UNKNOWN) is None
    assert await resolver.decimals_for(UNKNOWN) == 9
    assert tokens.fetch_count == 1

    clock.now += 30
    await resolver.symbol_for(UNKNOWN)
    assert tokens.fetch_count == 1

    clock.now += 31
    tokens.fail = False
    tokens.tokens = [VerifiedToken(mint=UNKNOWN, symbol="NEW", name="New Token", decimals=4)]
    assert await resolver.symbol_for(UNKNOWN) == "NEW"
    assert await resolver.decimals_for(UNKNOWN) == 4
    assert tokens.fetch_count == 2


async def test_invalidate_forces_refetch(token_list):
    resolver = TokenResolver(token_list)
    await resolver.icon_for(BONK)
    assert resolver.is_loaded

    resolver.invalidate()
    assert not resolver.is_loaded
    await resolver.icon_for(BONK)
    assert token_list.fetch_count == 2


async def test_bonk_symbol_comes_from_hardcoded_table(token_list):
    resolver = TokenResolver(token_list)
    assert await resolver.symbol_for(BONK) == "BONK"
