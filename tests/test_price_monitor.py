"""
Tests for the monitor tick and loop.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from models import TradeSide
from price_monitor import monitor_loop, run_tick


def fake_position(pos_id):
    pos = MagicMock()
    pos.id = pos_id
    return pos


class TestRunTick:

    @pytest.mark.asyncio
    async def test_evaluates_each_position_in_order(self):
        positions = [fake_position(1), fake_position(2), fake_position(3)]
        store = MagicMock()
        store.list_open = AsyncMock(return_value=positions)
        evaluator = MagicMock()
        evaluator.evaluate = AsyncMock(return_value=None)

        assert await run_tick(evaluator, store) == 3
        assert [c.args[0].id for c in evaluator.evaluate.await_args_list] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_error_in_one_position_does_not_stop_the_others(self):
        positions = [fake_position(1), fake_position(2)]
        store = MagicMock()
        store.list_open = AsyncMock(return_value=positions)
        evaluator = MagicMock()
        evaluator.evaluate = AsyncMock(side_effect=[RuntimeError("boom"), TradeSide.SELL_SL])
        notify = AsyncMock()

        assert await run_tick(evaluator, store, notify=notify) == 2

        assert evaluator.evaluate.await_count == 2
        notify.assert_awaited_once()
        assert "1" in notify.await_args.args[0]

    @pytest.mark.asyncio
    async def test_no_open_positions(self):
        store = MagicMock()
        store.list_open = AsyncMock(return_value=[])
        evaluator = MagicMock()
        evaluator.evaluate = AsyncMock()

        assert await run_tick(evaluator, store) == 0
        evaluator.evaluate.assert_not_awaited()


class TestMonitorLoop:

    @pytest.mark.asyncio
    async def test_updates_status_and_stops_on_cancel(self):
        store = MagicMock()
        store.list_open = AsyncMock(return_value=[fake_position(1)])
        evaluator = MagicMock()
        evaluator.evaluate = AsyncMock(return_value=None)
        status = {}

        sleep = AsyncMock(side_effect=[None, asyncio.CancelledError()])
        with patch("price_monitor.asyncio.sleep", sleep):
            with pytest.raises(asyncio.CancelledError):
                await monitor_loop(evaluator, store, poll_interval_sec=15.0, status=status)

        assert status["total_ticks"] == 2
        assert status["open_positions"] == 1
        assert status["last_tick"] is not None

    @pytest.mark.asyncio
    async def test_store_failure_keeps_looping(self):
        store = MagicMock()
        store.list_open = AsyncMock(side_effect=[RuntimeError("db down"), []])
        evaluator = MagicMock()
        status = {}

        sleep = AsyncMock(side_effect=[None, asyncio.CancelledError()])
        with patch("price_monitor.asyncio.sleep", sleep):
            with pytest.raises(asyncio.CancelledError):
                await monitor_loop(evaluator, store, poll_interval_sec=1.0, status=status)

        assert store.list_open.await_count == 2
        assert status["total_ticks"] == 1
