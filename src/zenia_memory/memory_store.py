"""
记忆存储模块

使用 SQLite 数据库持久化问答记忆；数据库不可用时降级为进程内存储。
两种实现提供相同的接口（open/put/get_all/clear），上层无需关心当前后端。
"""

import asyncio
import json
import logging
import re
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import List, Dict, Any

from .models import MemoryRecord, RecordKind


logger = logging.getLogger(__name__)

_TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class MemoryStoreError(Exception):
    """记忆存储异常基类"""
    pass


class StoreState(str, Enum):
    """存储状态"""
    CLOSED = "closed"  # 尚未打开
    READY = "ready"  # 可用
    UNAVAILABLE = "unavailable"  # 后端不可用


class MemoryStore(ABC):
    """
    记忆存储接口

    所有操作均为异步，且不抛出异常：失败通过返回值表达。
    """

    backend_name = "abstract"

    def __init__(self):
        self._state = StoreState.CLOSED

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == StoreState.READY

    @abstractmethod
    async def open(self) -> StoreState:
        """打开存储（幂等），返回存储状态"""

    @abstractmethod
    async def put(self, record: MemoryRecord) -> bool:
        """按ID写入或覆盖记录"""

    @abstractmethod
    async def get_all(self) -> List[MemoryRecord]:
        """获取全部记录快照（按写入顺序），不可用时返回空列表"""

    @abstractmethod
    async def clear(self) -> bool:
        """删除全部记录"""

    @abstractmethod
    async def count(self) -> int:
        """统计记录数量"""


class SQLiteMemoryStore(MemoryStore):
    """
    SQLite 记忆存储

    每次操作使用独立连接，阻塞调用通过 asyncio.to_thread 执行。
    写入使用 upsert，单条记录在一个事务内完成。
    """

    backend_name = "sqlite"

    def __init__(self, db_path: str = "data/memory/zenia_memory.db", table_name: str = "memories"):
        """
        初始化记忆存储

        Args:
            db_path: 数据库文件路径
            table_name: 记忆表名
        """
        super().__init__()
        if not _TABLE_NAME_PATTERN.match(table_name):
            raise MemoryStoreError(f"Invalid table name: {table_name}")

        self.db_path = Path(db_path)
        self.table_name = table_name

    @contextmanager
    def _get_connection(self):
        """获取数据库连接（上下文管理器）"""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _initialize_database(self):
        """初始化数据库表"""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._get_connection() as conn:
            conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                question TEXT NOT NULL,
                answer TEXT NOT NULL,
                embedding TEXT,
                created_at DATETIME NOT NULL
            );
            """)
            conn.commit()

    def _row_to_record(self, row: sqlite3.Row) -> MemoryRecord:
        """将数据库行转换为记录对象"""
        data: Dict[str, Any] = dict(row)
        if data.get('embedding'):
            data['embedding'] = json.loads(data['embedding'])
        else:
            data['embedding'] = None
        return MemoryRecord.from_dict(data)

    async def open(self) -> StoreState:
        if self._state != StoreState.CLOSED:
            return self._state

        try:
            await asyncio.to_thread(self._initialize_database)
            self._state = StoreState.READY
            logger.info(f"SQLiteMemoryStore opened: db={self.db_path}, table={self.table_name}")
        except (sqlite3.Error, OSError) as e:
            self._state = StoreState.UNAVAILABLE
            logger.warning(f"SQLite store unavailable ({self.db_path}): {e}")

        return self._state

    def _put_sync(self, record: MemoryRecord):
        sql = f"""
        INSERT INTO {self.table_name} (id, kind, question, answer, embedding, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            kind = excluded.kind,
            question = excluded.question,
            answer = excluded.answer,
            embedding = excluded.embedding,
            created_at = excluded.created_at
        """
        embedding = json.dumps(record.embedding) if record.embedding is not None else None

        with self._get_connection() as conn:
            with conn:
                conn.execute(sql, (
                    record.id,
                    RecordKind(record.kind).value,
                    record.question,
                    record.answer,
                    embedding,
                    record.created_at.isoformat()
                ))

    async def put(self, record: MemoryRecord) -> bool:
        if not self.is_ready:
            logger.error(f"Cannot put record {record.id}: store is {self._state.value}")
            return False

        try:
            await asyncio.to_thread(self._put_sync, record)
            logger.debug(f"Record stored: {record.id}")
            return True
        except sqlite3.Error as e:
            logger.error(f"Failed to put record {record.id}: {e}")
            return False

    def _get_all_sync(self) -> List[MemoryRecord]:
        sql = f"SELECT id, kind, question, answer, embedding, created_at FROM {self.table_name} ORDER BY rowid"

        with self._get_connection() as conn:
            rows = conn.execute(sql).fetchall()

        records = []
        for row in rows:
            try:
                records.append(self._row_to_record(row))
            except Exception as e:
                logger.warning(f"Skipping unreadable record {row['id']}: {e}")
        return records

    async def get_all(self) -> List[MemoryRecord]:
        if not self.is_ready:
            return []

        try:
            return await asyncio.to_thread(self._get_all_sync)
        except sqlite3.Error as e:
            logger.error(f"Failed to read records: {e}")
            return []

    def _clear_sync(self) -> int:
        with self._get_connection() as conn:
            with conn:
                cursor = conn.execute(f"DELETE FROM {self.table_name}")
                return cursor.rowcount

    async def clear(self) -> bool:
        if not self.is_ready:
            return False

        try:
            deleted_count = await asyncio.to_thread(self._clear_sync)
            logger.info(f"Cleared {deleted_count} memory records")
            return True
        except sqlite3.Error as e:
            logger.error(f"Failed to clear records: {e}")
            return False

    def _count_sync(self) -> int:
        with self._get_connection() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {self.table_name}").fetchone()[0]

    async def count(self) -> int:
        if not self.is_ready:
            return 0

        try:
            return await asyncio.to_thread(self._count_sync)
        except sqlite3.Error as e:
            logger.error(f"Failed to count records: {e}")
            return 0


class InMemoryMemoryStore(MemoryStore):
    """进程内记忆存储（非持久化降级方案）"""

    backend_name = "memory"

    def __init__(self):
        super().__init__()
        self._records: Dict[str, MemoryRecord] = {}

    async def open(self) -> StoreState:
        if self._state == StoreState.CLOSED:
            self._state = StoreState.READY
            logger.info("InMemoryMemoryStore opened (records will not survive restart)")
        return self._state

    async def put(self, record: MemoryRecord) -> bool:
        if not self.is_ready:
            return False
        # 覆盖已有ID时保留原有顺序
        self._records[record.id] = record.model_copy(deep=True)
        return True

    async def get_all(self) -> List[MemoryRecord]:
        if not self.is_ready:
            return []
        return [record.model_copy(deep=True) for record in self._records.values()]

    async def clear(self) -> bool:
        if not self.is_ready:
            return False
        self._records.clear()
        return True

    async def count(self) -> int:
        return len(self._records) if self.is_ready else 0


async def open_memory_store(
    db_path: str = "data/memory/zenia_memory.db",
    table_name: str = "memories",
    durable: bool = True
) -> MemoryStore:
    """
    打开记忆存储，SQLite 不可用时降级为进程内存储

    Args:
        db_path: 数据库文件路径
        table_name: 记忆表名
        durable: 是否尝试持久化存储

    Returns:
        已打开的存储实例
    """
    if durable:
        try:
            store = SQLiteMemoryStore(db_path=db_path, table_name=table_name)
        except MemoryStoreError as e:
            logger.error(f"Invalid store configuration: {e}")
        else:
            if await store.open() == StoreState.READY:
                return store

        logger.warning("Durable store unavailable, falling back to in-process memory store")

    fallback = InMemoryMemoryStore()
    await fallback.open()
    return fallback
