"""空闲连接登记表"""

from collections import OrderedDict
from typing import Iterator, List, Optional

from .connection import PooledConnection


class IdleRegistry:
    """
    空闲连接登记表

    按归还时间排序：尾部是最近归还的连接（借出时优先复用），
    头部是空闲最久的连接（回收时优先淘汰）。插入、按 id 删除均为 O(1)。
    """

    def __init__(self):
        self._connections: "OrderedDict[str, PooledConnection]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection: PooledConnection) -> bool:
        return connection.id in self._connections

    def __iter__(self) -> Iterator[PooledConnection]:
        """从空闲最久到最近归还的顺序遍历"""
        return iter(list(self._connections.values()))

    def push(self, connection: PooledConnection) -> None:
        self._connections[connection.id] = connection
        self._connections.move_to_end(connection.id)

    def pop_most_recent(self) -> Optional[PooledConnection]:
        if not self._connections:
            return None
        _, connection = self._connections.popitem(last=True)
        return connection

    def pop_oldest(self) -> Optional[PooledConnection]:
        if not self._connections:
            return None
        _, connection = self._connections.popitem(last=False)
        return connection

    def remove(self, connection: PooledConnection) -> bool:
        return self._connections.pop(connection.id, None) is not None

    def drain(self) -> List[PooledConnection]:
        connections = list(self._connections.values())
        self._connections.clear()
        return connections
