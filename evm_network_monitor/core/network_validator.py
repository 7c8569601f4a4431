"""
网络连接验证模块

负责验证网络连接、校验链ID并显示连接信息
"""

from typing import Any, Dict, Optional

from evm_network_monitor.exceptions import ChainMismatchError
from evm_network_monitor.managers.rpc_manager import RpcGateway
from evm_network_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)


class NetworkValidator:
    """网络连接验证器"""

    def __init__(self, gateway: RpcGateway, expected_chain_id: Optional[int] = None):
        """
        初始化网络验证器

        Args:
            gateway: RPC网关
            expected_chain_id: 配置的链ID，为 None 时不校验
        """
        self.gateway = gateway
        self.expected_chain_id = expected_chain_id

    async def check_network_connection(self) -> Dict[str, Any]:
        """
        检查网络连接

        连接失败只记录日志（节点可能稍后恢复），链ID不匹配则抛出异常

        Returns:
            连接信息字典

        Raises:
            ChainMismatchError: 节点链ID与配置不一致
        """
        logger.info("🌐 正在检查网络连接...")

        connection_info = await self.gateway.test_connection()

        if not connection_info['success']:
            logger.error(f"❌ 网络连接失败: {connection_info['error']}，将在后台继续重试")
            return connection_info

        logger.info(
            f"🌐 {connection_info['network']} 连接成功 - "
            f"区块: {connection_info['latest_block']}, "
            f"Gas: {connection_info['gas_price_gwei']:.2f} Gwei, "
            f"链ID: {connection_info['chain_id']}"
        )
        self.validate_chain_id(connection_info['chain_id'])
        return connection_info

    def validate_chain_id(self, actual: int) -> None:
        """校验链ID

        Raises:
            ChainMismatchError: 链ID不一致
        """
        if self.expected_chain_id is None:
            return
        if int(self.expected_chain_id) != actual:
            logger.error(f"❌ 链ID不匹配: 配置 {self.expected_chain_id}，节点 {actual}")
            raise ChainMismatchError(int(self.expected_chain_id), actual)
