"""网络监控器集成测试（假链 + 假网关）"""

import asyncio
import dataclasses

import pytest
import pytest_asyncio

from evm_network_monitor.core.network_monitor import NetworkMonitor
from evm_network_monitor.exceptions import ChainMismatchError, InvalidAccountError, MonitorError
from evm_network_monitor.models.data_types import (
    ConfirmationOutcome, ProductionRate, TransactionStatus, TransactionType
)

from evm_network_monitor.tests.conftest import (
    ACCOUNT, OTHER, THIRD, make_tx, no_sleep, tx_hash
)


async def settle(rounds: int = 50):
    """让后台任务（窗口消费者、索引器、确认跟踪）跑完当前工作"""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest_asyncio.fixture
async def monitor(config, gateway, store, clock, chain):
    chain.add_blocks(3)
    instance = NetworkMonitor(config, gateway=gateway, store=store, clock=clock, sleep=no_sleep)
    yield instance
    await instance.graceful_shutdown()


@pytest_asyncio.fixture
async def tracked(config, gateway, store, clock, chain):
    chain.add_blocks(3)
    account_config = dataclasses.replace(config, tracked_account=ACCOUNT)
    instance = NetworkMonitor(account_config, gateway=gateway, store=store, clock=clock,
                              sleep=no_sleep)
    await instance.start()
    yield instance
    await instance.graceful_shutdown()


class TestStartup:

    @pytest.mark.asyncio
    async def test_start_fills_window_and_metrics(self, monitor):
        await monitor.start()
        assert [s.number for s in monitor.block_history] == [3, 2, 1]
        # 区块间隔 2 秒
        assert monitor.metrics.avg_block_time == 2.0
        assert monitor.metrics.gas_utilization == 10.0
        assert monitor.metrics.gas_price == 2 * 10**9
        assert monitor.health.is_healthy
        assert monitor.tracked_account is None
        assert monitor.transactions == []

    @pytest.mark.asyncio
    async def test_chain_id_mismatch(self, monitor, chain):
        chain.chain_id = 56
        with pytest.raises(ChainMismatchError):
            await monitor.start()
        assert not monitor.is_running

    @pytest.mark.asyncio
    async def test_start_tolerates_unreachable_node(self, monitor, gateway):
        gateway.failing.add('*')
        await monitor.start()
        assert monitor.is_running
        assert monitor.block_history == []
        assert monitor.metrics.tps == 0

    @pytest.mark.asyncio
    async def test_status_snapshot(self, tracked):
        status = tracked.get_status()
        assert status['chain'] == 'local'
        assert status['monitor']['tracked_account'] == ACCOUNT
        assert status['monitor']['current_block'] == 3
        assert {t['name'] for t in status['tasks']} == {'block-feed', 'health-tick', 'latency-probe'}
        assert 'indexer' in status and 'confirmations' in status


class TestHealth:

    @pytest.mark.asyncio
    async def test_stall_then_recover(self, monitor, clock, chain):
        await monitor.start()

        clock.advance(7)
        await monitor._health_tick()
        assert monitor.health.production_rate is ProductionRate.SLOW
        assert not monitor.health.is_healthy

        clock.advance(4)
        await monitor._health_tick()
        assert monitor.health.production_rate is ProductionRate.STALLED

        chain.add_block()
        await monitor.refresh()
        await settle()
        assert monitor.health.production_rate is ProductionRate.NORMAL
        assert monitor.block_history[0].number == 4

    @pytest.mark.asyncio
    async def test_latency_probe_failure_reports_sentinel(self, monitor, gateway):
        await monitor.start()
        gateway.failing.add('eth_blockNumber')
        await monitor._probe_latency()
        assert monitor.health.rpc_latency_ms == 9999


class TestAccountTracking:

    @pytest.mark.asyncio
    async def test_pending_then_mined(self, tracked, chain):
        record = tracked.add_pending_transaction(tx_hash(0xabc), OTHER, 10**18, 10**9)
        assert record.status is TransactionStatus.PENDING
        assert record.tx_type is TransactionType.SEND
        assert [r.hash for r in tracked.transactions] == [tx_hash(0xabc)]

        chain.add_block([make_tx(0xabc, ACCOUNT, OTHER, value=10**18)])
        result = await tracked.refresh()
        await settle()

        assert result['blocks'] == 1
        records = tracked.transactions
        assert len(records) == 1
        assert records[0].status is TransactionStatus.SUCCESS
        assert records[0].gas_used == 21000
        assert records[0].block_number == 4

    @pytest.mark.asyncio
    async def test_new_block_is_indexed_without_refresh(self, tracked, chain):
        chain.add_block([make_tx(1, OTHER, ACCOUNT, value=3)])
        await tracked.block_feed.poll_once()
        await settle()
        assert [(r.hash, r.tx_type) for r in tracked.transactions] == [
            (tx_hash(1), TransactionType.RECEIVE)
        ]

    @pytest.mark.asyncio
    async def test_unknown_transaction_stays_pending(self, tracked, gateway):
        tracked.add_pending_transaction(tx_hash(7), OTHER, 1, 1)
        await settle()
        tracker = tracked.session.tracker
        assert tracker.outcomes[tx_hash(7)] is ConfirmationOutcome.NOT_FOUND
        assert gateway.count('eth_getTransactionReceipt') >= 5
        assert tracked.transactions[0].status is TransactionStatus.PENDING

    @pytest.mark.asyncio
    async def test_tracker_confirms_once_mined(self, config, gateway, store, clock, chain):
        chain.add_blocks(1)
        gate = asyncio.Event()

        async def wait_for_gate(_delay):
            await gate.wait()

        account_config = dataclasses.replace(config, tracked_account=ACCOUNT)
        instance = NetworkMonitor(account_config, gateway=gateway, store=store, clock=clock,
                                  sleep=wait_for_gate)
        try:
            await instance.start()
            instance.add_pending_transaction(tx_hash(5), OTHER, 1, 1)
            await settle()
            chain.add_block([make_tx(5, ACCOUNT, OTHER, value=1)])
            gate.set()
            await settle()

            tracker = instance.session.tracker
            assert tracker.outcomes[tx_hash(5)] is ConfirmationOutcome.CONFIRMED
            record = instance.transactions[0]
            assert record.status is TransactionStatus.SUCCESS
            assert record.timestamp == int(chain.blocks[2]['timestamp'], 16)
        finally:
            await instance.graceful_shutdown()

    @pytest.mark.asyncio
    async def test_add_pending_without_account(self, monitor):
        await monitor.start()
        with pytest.raises(MonitorError):
            monitor.add_pending_transaction(tx_hash(1), OTHER, 1, 1)

    @pytest.mark.asyncio
    async def test_records_survive_restart(self, config, gateway, store, clock, chain, tracked):
        tracked.add_pending_transaction(tx_hash(9), OTHER, 10**18, 1)
        await tracked.graceful_shutdown()

        account_config = dataclasses.replace(config, tracked_account=ACCOUNT)
        again = NetworkMonitor(account_config, gateway=gateway, store=store, clock=clock,
                               sleep=no_sleep)
        try:
            await again.start()
            assert [r.hash for r in again.transactions] == [tx_hash(9)]
            assert again.transactions[0].value == 10**18
        finally:
            await again.graceful_shutdown()


class TestSwitchAccount:

    @pytest.mark.asyncio
    async def test_switch_replaces_session(self, tracked, chain):
        chain.add_block([make_tx(1, OTHER, THIRD)])
        await tracked.block_feed.poll_once()
        old_session = tracked.session

        session = await tracked.switch_account(THIRD)
        assert session is not old_session
        assert tracked.tracked_account == THIRD
        assert [r.hash for r in tracked.transactions] == [tx_hash(1)]
        assert old_session.stop_event.is_set()

    @pytest.mark.asyncio
    async def test_same_account_keeps_session(self, tracked):
        session = tracked.session
        assert await tracked.switch_account(ACCOUNT.upper().replace('0X', '0x')) is session

    @pytest.mark.asyncio
    async def test_invalid_account_keeps_session(self, tracked):
        session = tracked.session
        with pytest.raises(InvalidAccountError):
            await tracked.switch_account("0x1234")
        assert tracked.session is session
        assert tracked.tracked_account == ACCOUNT

    @pytest.mark.asyncio
    async def test_switch_to_none_stops_tracking(self, tracked):
        assert await tracked.switch_account(None) is None
        assert tracked.tracked_account is None
        assert tracked.transactions == []

    @pytest.mark.asyncio
    async def test_switch_cancels_scan_in_flight(self, tracked, chain, gateway):
        chain.add_block([make_tx(1, ACCOUNT, OTHER)], with_receipts=False)
        await gateway.get_block_number()
        gate = asyncio.Event()
        gateway.gates['eth_getBlockByNumber'] = gate
        old_session = tracked.session

        refresh = asyncio.create_task(old_session.refresh())
        await settle()
        assert not refresh.done()

        switch = asyncio.create_task(tracked.switch_account(THIRD))
        await settle()
        gate.set()
        await switch
        assert await refresh == 0
        await settle()

        assert tracked.tracked_account == THIRD
        assert old_session.tracker.active_count == 0
        assert not old_session.tracker.is_tracking(tx_hash(1))
        assert old_session.indexer.get_record(tx_hash(1)) is None
        cached = tracked.cache.load(ACCOUNT) or []
        assert tx_hash(1) not in [r.hash for r in cached]

    @pytest.mark.asyncio
    async def test_closed_session_ignores_late_results(self, tracked, chain):
        old_session = tracked.session
        await tracked.switch_account(None)

        assert await old_session.refresh() == 0
        chain.add_block([make_tx(2, OTHER, ACCOUNT)], with_receipts=False)
        await old_session.indexer.process_block(chain.blocks[chain.height])
        assert old_session.indexer.get_record(tx_hash(2)) is None
        assert old_session.tracker.active_count == 0


class TestShutdown:

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, tracked, gateway):
        await tracked.graceful_shutdown()
        await tracked.graceful_shutdown()
        assert gateway.closed
        assert not tracked.is_running
        assert not any(t.is_running() for t in tracked._periodic_tasks)

    @pytest.mark.asyncio
    async def test_run_forever_returns_after_shutdown(self, monitor):
        runner = asyncio.create_task(monitor.run_forever())
        await settle()
        assert monitor.is_running
        await monitor.graceful_shutdown()
        await asyncio.wait_for(runner, timeout=1)
