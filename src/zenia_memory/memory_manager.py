"""
记忆管理器模块

统一的记忆操作入口：记录问答对、检索最相近的历史回答、启动时补全嵌入向量。
语义检索置信度不足或不可用时降级为词汇匹配。
"""

import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

from .embedding_service import EmbeddingProvider
from .memory_store import MemoryStore
from .models import (
    MemoryRecord,
    MemoryMatch,
    MatchStrategy,
    DEFAULT_MAX_QUESTION_LENGTH,
    DEFAULT_MAX_ANSWER_LENGTH,
)
from .similarity import cosine_similarity, lexical_overlap_score


logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.55
ANSWER_SEPARATOR = "\n\n"


class MemoryManagerError(Exception):
    """记忆管理器异常基类"""
    pass


class MemoryManager:
    """
    记忆管理器

    协调各子组件：
    - MemoryStore: 记忆持久化
    - EmbeddingProvider: 文本嵌入
    - similarity: 余弦相似度 / 词汇重叠评分
    """

    def __init__(
        self,
        store: MemoryStore,
        embedding_provider: EmbeddingProvider,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        max_question_length: int = DEFAULT_MAX_QUESTION_LENGTH,
        max_answer_length: int = DEFAULT_MAX_ANSWER_LENGTH,
        default_top_k: int = 1,
        on_count_changed: Optional[Callable[[int], Any]] = None
    ):
        """
        初始化记忆管理器

        Args:
            store: 已打开的记忆存储
            embedding_provider: 嵌入服务
            similarity_threshold: 语义检索置信度阈值（严格大于才采用）
            max_question_length: 问题最大字符数
            max_answer_length: 回答最大字符数
            default_top_k: 默认返回数量
            on_count_changed: 记忆数量变化回调（参数为当前记录数，可以是协程函数）
        """
        self.store = store
        self.embedding_provider = embedding_provider
        self.similarity_threshold = similarity_threshold
        self.max_question_length = max_question_length
        self.max_answer_length = max_answer_length
        self.default_top_k = default_top_k
        self.on_count_changed = on_count_changed

        logger.info(
            f"MemoryManager initialized: backend={store.backend_name}, "
            f"threshold={similarity_threshold}"
        )

    async def record(self, question: str, answer: str) -> Optional[str]:
        """
        记录新的问答对

        Args:
            question: 问题文本
            answer: 回答文本

        Returns:
            记录ID，失败时为 None（错误只记录日志，不抛出）
        """
        try:
            embedding = None
            if self.embedding_provider.is_ready:
                embedding = await self.embedding_provider.embed(question)

            record = MemoryRecord.create(
                question=question,
                answer=answer,
                embedding=embedding,
                max_question_length=self.max_question_length,
                max_answer_length=self.max_answer_length
            )

            if not await self.store.put(record):
                logger.error(f"Failed to store record for question: {question[:50]}")
                return None

            logger.debug(f"Memory recorded: {record.id} (embedded={record.has_embedding})")
            await self._notify_count_changed()
            return record.id

        except Exception as e:
            logger.error(f"Failed to record memory: {e}")
            return None

    async def search(self, query: str, top_k: Optional[int] = None) -> List[MemoryMatch]:
        """
        检索与查询最相近的记忆

        先尝试语义检索，最高分不超过阈值时降级为词汇匹配。

        Args:
            query: 查询文本
            top_k: 语义检索返回数量（词汇匹配始终只返回一条）

        Returns:
            命中列表（按得分降序），无命中时为空列表
        """
        if top_k is None:
            top_k = self.default_top_k
        if top_k < 1:
            logger.warning(f"Invalid top_k={top_k}, using 1")
            top_k = 1

        try:
            records = await self.store.get_all()
            if not records:
                return []

            matches = await self._semantic_search(query, records, top_k)
            if matches:
                return matches

            return self._lexical_search(query, records)

        except Exception as e:
            logger.error(f"Memory search failed: {e}")
            return []

    async def retrieve(self, query: str, top_k: Optional[int] = None) -> Optional[str]:
        """
        检索最相近的历史回答

        Args:
            query: 查询文本
            top_k: 返回回答数量

        Returns:
            回答文本（多条时以空行分隔），无命中时为 None
        """
        matches = await self.search(query, top_k)
        if not matches:
            logger.debug(f"No memory match for query: {query[:50]}")
            return None

        return ANSWER_SEPARATOR.join(match.record.answer for match in matches)

    async def _semantic_search(
        self,
        query: str,
        records: List[MemoryRecord],
        top_k: int
    ) -> List[MemoryMatch]:
        """
        语义检索

        Returns:
            置信度足够时的命中列表，否则为空列表
        """
        if not self.embedding_provider.is_ready:
            return []

        query_embedding = await self.embedding_provider.embed(query)
        if not query_embedding:
            return []

        dimension = len(query_embedding)
        scored = []
        skipped = 0
        for record in records:
            if not record.embedding:
                continue
            if len(record.embedding) != dimension:
                skipped += 1
                continue
            scored.append((cosine_similarity(query_embedding, record.embedding), record))

        if skipped:
            logger.debug(f"Skipped {skipped} records with mismatched embedding dimension")

        if not scored:
            return []

        scored.sort(key=lambda item: item[0], reverse=True)
        top_score = scored[0][0]
        if top_score <= self.similarity_threshold:
            logger.debug(f"Semantic search inconclusive (top={top_score:.3f}), falling back to lexical")
            return []

        return [
            MemoryMatch(record=record, score=score, strategy=MatchStrategy.SEMANTIC)
            for score, record in scored[:top_k]
        ]

    def _lexical_search(self, query: str, records: List[MemoryRecord]) -> List[MemoryMatch]:
        """
        词汇匹配（降级方案）

        Returns:
            得分最高的一条记录（并列时取先出现者），无重叠时为空列表
        """
        best_record = None
        best_score = 0
        for record in records:
            score = lexical_overlap_score(query, record.question)
            if score > best_score:
                best_record, best_score = record, score

        if best_record is None:
            return []

        return [MemoryMatch(record=best_record, score=float(best_score), strategy=MatchStrategy.LEXICAL)]

    async def ensure_embeddings_for_all(self) -> int:
        """
        为缺少嵌入向量的记录补全向量（启动时修复）

        Returns:
            本次补全的记录数量
        """
        if not self.embedding_provider.is_ready:
            logger.debug("Embedding provider not ready, skipping embedding repair")
            return 0

        repaired = 0
        for record in await self.store.get_all():
            if record.has_embedding:
                continue

            try:
                embedding = await self.embedding_provider.embed(record.question)
                if not embedding:
                    logger.warning(f"Embedding computation failed for record {record.id}, skipping")
                    continue

                if await self.store.put(record.with_embedding(embedding)):
                    repaired += 1
                else:
                    logger.warning(f"Failed to store repaired record {record.id}")

            except Exception as e:
                logger.warning(f"Failed to repair record {record.id}: {e}")

        if repaired:
            logger.info(f"Backfilled embeddings for {repaired} records")
        return repaired

    async def clear_all(self, confirm: bool = False) -> bool:
        """
        删除全部记忆

        Args:
            confirm: 确认删除

        Returns:
            删除是否成功

        Raises:
            MemoryManagerError: 未确认删除
        """
        if not confirm:
            raise MemoryManagerError("Must confirm deletion by setting confirm=True")

        logger.warning("Deleting ALL memories!")
        cleared = await self.store.clear()
        if cleared:
            await self._notify_count_changed()
        return cleared

    async def count(self) -> int:
        """记忆数量"""
        return await self.store.count()

    async def get_statistics(self) -> Dict[str, Any]:
        """
        获取统计信息

        Returns:
            统计信息字典
        """
        try:
            records = await self.store.get_all()
            return {
                'total_records': len(records),
                'embedded_records': sum(1 for r in records if r.has_embedding),
                'store_backend': self.store.backend_name,
                'provider_state': self.embedding_provider.state.value,
                'embedding_dimension': self.embedding_provider.dimension,
                'similarity_threshold': self.similarity_threshold
            }
        except Exception as e:
            logger.error(f"Failed to get statistics: {e}")
            return {}

    async def _notify_count_changed(self):
        if self.on_count_changed is None:
            return

        try:
            result = self.on_count_changed(await self.store.count())
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Memory count callback failed: {e}")
