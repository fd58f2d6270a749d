"""
Snowflake ID 生成器模块

账本类表（payments、subscriptions、media_purchases 等）的主键
都由这里生成，不依赖数据库自增序列，便于在写入前就拿到 ID
（记账系统同步用的 externalId 就是 Payment.id）。

ID 结构（64 位）：41 位毫秒时间戳 | 10 位节点 ID | 12 位序列号
"""
from __future__ import annotations

import threading
import time

from paywall.core.config import settings

# 2024-01-01T00:00:00Z
_EPOCH_MS = 1704067200000
_MAX_BACKWARDS_MS = 5000


class Snowflake:
    """线程安全的 Snowflake 生成器，每个进程一个节点 ID。"""

    def __init__(self, *, node_id: int) -> None:
        if not (0 <= node_id <= 1023):
            raise ValueError("SNOWFLAKE_NODE_ID must be in [0, 1023]")
        self._node_id = node_id
        self._lock = threading.Lock()
        self._last_ts = -1
        self._seq = 0

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)

    @classmethod
    def _wait_until(cls, target_ms: int) -> int:
        ts = cls._now_ms()
        while ts < target_ms:
            time.sleep(0.001)
            ts = cls._now_ms()
        return ts

    def next_id(self) -> int:
        """
        生成下一个 ID

        时钟回拨不超过 5 秒时等待追平，超过则拒绝生成。

        Raises:
            RuntimeError: 时钟回拨超过 5 秒
        """
        with self._lock:
            ts = self._now_ms()
            if ts < self._last_ts:
                drift = self._last_ts - ts
                if drift > _MAX_BACKWARDS_MS:
                    raise RuntimeError(
                        f"Clock moved backwards by {drift}ms. "
                        "Refusing to generate IDs to prevent duplicates."
                    )
                ts = self._wait_until(self._last_ts)

            if ts == self._last_ts:
                self._seq = (self._seq + 1) & 0xFFF
                if self._seq == 0:
                    # 同一毫秒内序列号用尽
                    ts = self._wait_until(self._last_ts + 1)
            else:
                self._seq = 0

            self._last_ts = ts
            return ((ts - _EPOCH_MS) << 22) | (self._node_id << 12) | self._seq


_GENERATOR: Snowflake | None = None
_GENERATOR_LOCK = threading.Lock()


def _get_generator() -> Snowflake:
    global _GENERATOR
    if _GENERATOR is None:
        with _GENERATOR_LOCK:
            if _GENERATOR is None:
                _GENERATOR = Snowflake(node_id=settings.SNOWFLAKE_NODE_ID)
    return _GENERATOR


def generate_id() -> int:
    """生成 64 位整数 ID（账本表主键）"""
    return _get_generator().next_id()


def generate_str_id() -> str:
    """生成字符串 ID（用户、消息、订阅计划等外部可引用实体的主键）"""
    return str(generate_id())
