"""
HTTP 接口

基于 aiohttp 的只读状态接口，另外提供刷新和登记 pending 交易两个操作
"""

from typing import Any, Dict, Optional

from aiohttp import web

from evm_network_monitor.core.network_monitor import NetworkMonitor
from evm_network_monitor.exceptions import MonitorError
from evm_network_monitor.models.transaction_adapter import record_to_storage
from evm_network_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)

MONITOR_KEY = web.AppKey("monitor", NetworkMonitor)


def _monitor(request: web.Request) -> NetworkMonitor:
    return request.app[MONITOR_KEY]


async def health_handler(request: web.Request) -> web.Response:
    monitor = _monitor(request)
    health = monitor.health
    body = {
        'status': 'healthy' if health.is_healthy else 'unhealthy',
        'chain': monitor.config.chain_name,
        'latest_block': monitor.window.latest_number,
        **health.to_dict(),
    }
    return web.json_response(body, status=200 if health.is_healthy else 503)


async def metrics_handler(request: web.Request) -> web.Response:
    monitor = _monitor(request)
    return web.json_response({
        'metrics': monitor.metrics.to_dict(),
        'block_history': [
            {'number': s.number, 'timestamp': s.timestamp,
             'transactions': s.transaction_count,
             'gas_used': str(s.gas_used), 'gas_limit': str(s.gas_limit)}
            for s in monitor.block_history
        ],
    })


async def transactions_handler(request: web.Request) -> web.Response:
    monitor = _monitor(request)
    return web.json_response({
        'account': monitor.tracked_account,
        'transactions': [record_to_storage(r) for r in monitor.transactions],
    })


async def status_handler(request: web.Request) -> web.Response:
    return web.json_response(_monitor(request).get_status())


async def refresh_handler(request: web.Request) -> web.Response:
    result = await _monitor(request).refresh()
    return web.json_response(result)


def _parse_int(data: Dict[str, Any], key: str, default: Optional[int] = None) -> Optional[int]:
    value = data.get(key, default)
    if value is None:
        return None
    if isinstance(value, (bool, float)):
        raise ValueError(f"{key} 必须为整数")
    return int(value, 0) if isinstance(value, str) else int(value)


async def add_pending_handler(request: web.Request) -> web.Response:
    try:
        data = await request.json()
    except ValueError:
        return web.json_response({'error': '请求体不是有效的 JSON'}, status=400)
    if not isinstance(data, dict):
        return web.json_response({'error': '请求体必须是 JSON 对象'}, status=400)

    try:
        record = _monitor(request).add_pending_transaction(
            data.get('hash'),
            data.get('to'),
            _parse_int(data, 'value', 0),
            _parse_int(data, 'gasPrice', 0),
            _parse_int(data, 'nonce'),
        )
    except (ValueError, TypeError) as e:
        return web.json_response({'error': str(e)}, status=400)
    except MonitorError as e:
        return web.json_response({'error': str(e)}, status=409)

    return web.json_response(record_to_storage(record), status=201)


def create_app(monitor: NetworkMonitor) -> web.Application:
    """创建 aiohttp 应用"""
    app = web.Application()
    app[MONITOR_KEY] = monitor
    app.router.add_get('/health', health_handler)
    app.router.add_get('/metrics', metrics_handler)
    app.router.add_get('/transactions', transactions_handler)
    app.router.add_get('/status', status_handler)
    app.router.add_post('/refresh', refresh_handler)
    app.router.add_post('/transactions/pending', add_pending_handler)
    return app


class MonitorApiServer:
    """HTTP 接口服务器"""

    def __init__(self, monitor: NetworkMonitor, host: str = "127.0.0.1", port: int = 8080):
        self.monitor = monitor
        self.host = host
        self.port = port
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        self._runner = web.AppRunner(create_app(self.monitor))
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"🌍 HTTP 接口已启动: http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        logger.info("✅ HTTP 接口已关闭")
