"""
Tests for BalanceOracle.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.keypair import Keypair

from balance_oracle import BalanceOracle

MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


def parsed_account(amount: str):
    account = MagicMock()
    account.account.data.parsed = {"info": {"tokenAmount": {"amount": amount}}}
    return account


@pytest.fixture
def owner():
    return Keypair().pubkey()


class TestBalanceOracle:

    @pytest.mark.asyncio
    async def test_sums_all_token_accounts(self, owner):
        rpc = MagicMock()
        rpc.get_token_accounts_by_owner_json_parsed = AsyncMock(
            return_value=MagicMock(value=[parsed_account("700"), parsed_account("300")])
        )

        assert await BalanceOracle(rpc).balance_of(owner, MINT) == 1000

        opts = rpc.get_token_accounts_by_owner_json_parsed.call_args.args[1]
        assert str(opts.mint) == MINT

    @pytest.mark.asyncio
    async def test_no_accounts_is_zero(self, owner):
        rpc = MagicMock()
        rpc.get_token_accounts_by_owner_json_parsed = AsyncMock(return_value=MagicMock(value=[]))
        assert await BalanceOracle(rpc).balance_of(owner, MINT) == 0

    @pytest.mark.asyncio
    async def test_rpc_failure_is_zero(self, owner):
        rpc = MagicMock()
        rpc.get_token_accounts_by_owner_json_parsed = AsyncMock(side_effect=RuntimeError("rpc down"))
        assert await BalanceOracle(rpc).balance_of(owner, MINT) == 0
