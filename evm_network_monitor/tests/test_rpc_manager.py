"""RPC 网关测试（替换 provider.make_request，不访问网络）"""

import asyncio
from unittest.mock import AsyncMock

import aiohttp
import pytest

from evm_network_monitor.core.latency_probe import LatencyProbe
from evm_network_monitor.exceptions import RpcError
from evm_network_monitor.managers.rpc_manager import RpcGateway


@pytest.fixture
def rpc(config):
    gateway = RpcGateway(config)
    gateway.w3.provider.make_request = AsyncMock()
    return gateway


def respond(rpc, *responses):
    rpc.w3.provider.make_request.side_effect = list(responses)


class TestRpcGateway:

    @pytest.mark.asyncio
    async def test_call_returns_result(self, rpc):
        respond(rpc, {'jsonrpc': '2.0', 'id': 1, 'result': '0x10'})
        assert await rpc.get_block_number() == 16
        assert rpc.cached_block_number == 16
        assert rpc.rpc_calls_by_type['eth_blockNumber'] == 1

    @pytest.mark.asyncio
    async def test_error_payload_is_application_error(self, rpc):
        respond(rpc, {'jsonrpc': '2.0', 'id': 1,
                      'error': {'code': -32000, 'message': 'header not found'}})
        with pytest.raises(RpcError) as exc_info:
            await rpc.call('eth_getBlockByNumber', ['0x1', False])
        assert exc_info.value.code == -32000
        assert not exc_info.value.is_transport
        assert rpc.rpc_errors == 1

    @pytest.mark.asyncio
    async def test_connection_error_is_transport(self, rpc):
        rpc.w3.provider.make_request.side_effect = aiohttp.ClientConnectionError("refused")
        with pytest.raises(RpcError) as exc_info:
            await rpc.get_gas_price()
        assert exc_info.value.is_transport
        assert exc_info.value.method == 'eth_gasPrice'

    @pytest.mark.asyncio
    async def test_timeout_is_transport(self, rpc):
        async def slow(*_args):
            await asyncio.sleep(1)
            return {'result': '0x1'}

        rpc.w3.provider.make_request.side_effect = slow
        with pytest.raises(RpcError) as exc_info:
            await rpc.call('eth_blockNumber', [], timeout=0.01)
        assert exc_info.value.is_transport

    @pytest.mark.asyncio
    async def test_malformed_response(self, rpc):
        respond(rpc, {'jsonrpc': '2.0', 'id': 1})
        with pytest.raises(RpcError):
            await rpc.call('eth_chainId')

    @pytest.mark.asyncio
    async def test_safe_call_wraps_failures(self, rpc):
        respond(rpc, {'error': {'code': -32601, 'message': 'nope'}}, {'result': '0x5'})
        failed = await rpc.safe_call('eth_foo')
        assert not failed.success and not failed.is_transient
        ok = await rpc.safe_call('eth_chainId')
        assert ok.success and ok.value == '0x5'

    @pytest.mark.asyncio
    async def test_null_receipt_is_not_an_error(self, rpc):
        respond(rpc, {'result': None})
        assert await rpc.get_transaction_receipt('0x' + '0' * 64) is None

    @pytest.mark.asyncio
    async def test_block_param_encoding(self, rpc):
        respond(rpc, {'result': None}, {'result': None})
        await rpc.get_block(255, True)
        await rpc.get_block('latest')
        calls = rpc.w3.provider.make_request.call_args_list
        assert calls[0].args[1] == ['0xff', True]
        assert calls[1].args[1] == ['latest', False]

    @pytest.mark.asyncio
    async def test_fee_history_decoded(self, rpc):
        respond(rpc, {'result': {'oldestBlock': '0xa', 'baseFeePerGas': ['0x1', '0x2'],
                                 'gasUsedRatio': [0.5], 'reward': [['0x3']]}})
        history = await rpc.get_fee_history(1, 'latest', [50])
        assert history['oldestBlock'] == 10
        assert history['baseFeePerGas'] == [1, 2]
        assert history['reward'] == [[3]]

    @pytest.mark.asyncio
    async def test_cached_block_number(self, rpc):
        respond(rpc, {'result': '0x1'})
        assert await rpc.get_cached_block_number() == 1
        assert await rpc.get_cached_block_number() == 1
        assert rpc.cache_hits == 1
        assert rpc.cache_misses == 1
        assert rpc.w3.provider.make_request.call_count == 1

    @pytest.mark.asyncio
    async def test_test_connection(self, rpc):
        respond(rpc, {'result': '0x64'}, {'result': hex(3 * 10**9)}, {'result': '0x539'})
        info = await rpc.test_connection()
        assert info['success']
        assert info['latest_block'] == 100
        assert info['gas_price_gwei'] == 3.0
        assert info['chain_id'] == 1337

    @pytest.mark.asyncio
    async def test_test_connection_failure(self, rpc):
        rpc.w3.provider.make_request.side_effect = aiohttp.ClientConnectionError("down")
        info = await rpc.test_connection()
        assert not info['success']
        assert 'down' in info['error']

    @pytest.mark.asyncio
    async def test_stats_and_health(self, rpc):
        assert not rpc.is_healthy()
        respond(rpc, {'result': '0x1'})
        await rpc.get_block_number()
        assert rpc.is_healthy()
        stats = rpc.get_performance_stats()
        assert stats.rpc_calls == 1 and stats.rpc_errors == 0
        rpc.reset_stats()
        assert rpc.get_performance_stats().rpc_calls == 0


class TestLatencyProbe:

    @pytest.mark.asyncio
    async def test_measures_round_trip(self, gateway):
        probe = LatencyProbe(gateway, timeout=5.0)
        latency = await probe.measure()
        assert 0 <= latency < 9999
        assert gateway.count('eth_blockNumber') == 1

    @pytest.mark.asyncio
    async def test_failure_reports_sentinel(self, gateway):
        gateway.failing.add('eth_blockNumber')
        probe = LatencyProbe(gateway)
        assert await probe.measure() == 9999
        assert probe.failures == 1
