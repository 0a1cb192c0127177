"""Store Protocol 接口定义

定义通用键值记录存储的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
TaskService / RuleService 只依赖此接口。
"""

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class KeyRange:
    """索引范围查询条件，None 表示该侧无边界"""

    lower: Any = None
    upper: Any = None
    lower_open: bool = False
    upper_open: bool = False


class RecordStore(Protocol):
    """记录存储接口

    记录是 JSON 兼容的 dict；写操作需在 readwrite 事务内调用。
    """

    async def get(self, key: str) -> dict[str, Any] | None:
        """按主键读取记录"""
        ...

    async def get_all(self) -> list[dict[str, Any]]:
        """读取全部记录"""
        ...

    async def add(self, record: dict[str, Any]) -> None:
        """插入新记录，主键冲突时抛出 IntegrityError"""
        ...

    async def put(self, record: dict[str, Any]) -> None:
        """插入或覆盖记录"""
        ...

    async def delete(self, key: str) -> bool:
        """删除记录，返回是否确有记录被删除"""
        ...

    async def query_by_index(
        self,
        index_name: str,
        key: Any | KeyRange,
    ) -> list[dict[str, Any]]:
        """按索引精确值或 KeyRange 查询"""
        ...
