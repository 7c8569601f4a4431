"""
交易记录适配器

负责三类转换：
- JSON-RPC 返回的交易/回执 -> TransactionRecord
- TransactionRecord <-> 持久化字典（camelCase 键，大整数以十进制字符串保存）
- 按 hash 合并新旧记录集合
"""

import time
from typing import Any, Dict, Iterable, List, Optional

from evm_network_monitor.models.data_types import (
    TransactionRecord, TransactionStatus, TransactionType, to_hex_str, to_quantity
)


def _lower(address: Optional[str]) -> Optional[str]:
    return address.lower() if address else None


def involves_account(tx: Dict[str, Any], account: str) -> bool:
    """交易的 from 或 to 是否为跟踪账户（不区分大小写）"""
    account = account.lower()
    return _lower(to_hex_str(tx.get('from'))) == account or _lower(to_hex_str(tx.get('to'))) == account


def classify_transaction(from_address: Optional[str], to_address: Optional[str],
                         account: str) -> TransactionType:
    """相对跟踪账户对交易分类

    to 为空 -> contract；只有 to 匹配 -> receive；其余 -> send
    """
    if not to_address:
        return TransactionType.CONTRACT
    account = account.lower()
    if _lower(from_address) == account:
        return TransactionType.SEND
    if _lower(to_address) == account:
        return TransactionType.RECEIVE
    return TransactionType.SEND


def status_from_receipt(receipt: Optional[Dict[str, Any]]) -> TransactionStatus:
    """回执 status 为 1 -> success，0 -> failed，没有回执 -> pending

    拜占庭分叉前的回执没有 status（只有 root），已打包即视为 success
    """
    if not receipt:
        return TransactionStatus.PENDING
    status = to_quantity(receipt.get('status'))
    if status is None:
        if to_quantity(receipt.get('blockNumber')) is not None:
            return TransactionStatus.SUCCESS
        return TransactionStatus.PENDING
    return TransactionStatus.SUCCESS if status == 1 else TransactionStatus.FAILED


def record_from_rpc(tx: Dict[str, Any], account: str, block_timestamp: Optional[int] = None,
                    receipt: Optional[Dict[str, Any]] = None) -> TransactionRecord:
    """根据区块内交易（以及可选的回执）构建记录"""
    from_address = _lower(to_hex_str(tx.get('from'))) or ""
    to_address = _lower(to_hex_str(tx.get('to')))

    record = TransactionRecord(
        hash=to_hex_str(tx['hash']).lower(),
        from_address=from_address,
        to_address=to_address,
        value=to_quantity(tx.get('value', 0)) or 0,
        gas_price=to_quantity(tx.get('gasPrice', 0)) or 0,
        tx_type=classify_transaction(from_address, to_address, account),
        timestamp=block_timestamp if block_timestamp is not None else int(time.time()),
        block_number=to_quantity(tx.get('blockNumber')),
        block_hash=_lower(to_hex_str(tx.get('blockHash'))),
        nonce=to_quantity(tx.get('nonce')),
    )
    if receipt:
        apply_receipt(record, receipt)
    return record


def apply_receipt(record: TransactionRecord, receipt: Dict[str, Any],
                  block_timestamp: Optional[int] = None) -> TransactionRecord:
    """用回执更新记录（原地修改）"""
    record.status = status_from_receipt(receipt)
    gas_used = to_quantity(receipt.get('gasUsed'))
    if gas_used is not None:
        record.gas_used = gas_used
    block_number = to_quantity(receipt.get('blockNumber'))
    if block_number is not None:
        record.block_number = block_number
    block_hash = to_hex_str(receipt.get('blockHash'))
    if block_hash:
        record.block_hash = block_hash.lower()
    effective_gas_price = to_quantity(receipt.get('effectiveGasPrice'))
    if effective_gas_price and not record.gas_price:
        record.gas_price = effective_gas_price
    if block_timestamp is not None:
        record.timestamp = block_timestamp
    record.touch()
    return record


def _int_to_str(value: Optional[int]) -> Optional[str]:
    return str(value) if value is not None else None


def _str_to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def record_to_storage(record: TransactionRecord) -> Dict[str, Any]:
    """转换为持久化格式"""
    return {
        'hash': record.hash,
        'from': record.from_address,
        'to': record.to_address,
        'value': str(record.value),
        'gasPrice': str(record.gas_price),
        'gasUsed': _int_to_str(record.gas_used),
        'status': record.status.value,
        'timestamp': record.timestamp,
        'blockNumber': _int_to_str(record.block_number),
        'blockHash': record.block_hash,
        'type': record.tx_type.value,
        'nonce': _int_to_str(record.nonce),
        'updatedAt': record.updated_at,
    }


def record_from_storage(data: Dict[str, Any]) -> TransactionRecord:
    """从持久化格式还原

    Raises:
        KeyError, ValueError: 数据缺字段或格式错误
    """
    return TransactionRecord(
        hash=data['hash'],
        from_address=data.get('from') or "",
        to_address=data.get('to'),
        value=int(data.get('value') or 0),
        gas_price=int(data.get('gasPrice') or 0),
        gas_used=_str_to_int(data.get('gasUsed')),
        status=TransactionStatus(data.get('status', TransactionStatus.PENDING.value)),
        timestamp=int(data.get('timestamp') or 0),
        block_number=_str_to_int(data.get('blockNumber')),
        block_hash=data.get('blockHash'),
        tx_type=TransactionType(data.get('type', TransactionType.SEND.value)),
        nonce=_str_to_int(data.get('nonce')),
        updated_at=float(data.get('updatedAt') or 0.0),
    )


def _fill_missing(winner: TransactionRecord, other: TransactionRecord) -> TransactionRecord:
    """胜出记录上为空的可选字段用另一条记录补齐"""
    for name in ('gas_used', 'block_number', 'block_hash', 'nonce'):
        if getattr(winner, name) is None and getattr(other, name) is not None:
            setattr(winner, name, getattr(other, name))
    return winner


def merge_records(existing: Iterable[TransactionRecord], incoming: Iterable[TransactionRecord],
                  max_records: int) -> List[TransactionRecord]:
    """按 hash 合并记录

    后写入者胜出，但已是终态（success/failed）的记录不会被 pending 覆盖。
    结果按时间戳倒序排列并截断到 max_records。
    """
    merged: Dict[str, TransactionRecord] = {}
    for record in existing:
        merged[record.hash.lower()] = record

    for record in incoming:
        key = record.hash.lower()
        current = merged.get(key)
        if current is None:
            merged[key] = record
        elif current.status.is_terminal and not record.status.is_terminal:
            _fill_missing(current, record)
        else:
            merged[key] = _fill_missing(record, current)

    ordered = sorted(merged.values(), key=lambda r: r.timestamp, reverse=True)
    return ordered[:max_records]
