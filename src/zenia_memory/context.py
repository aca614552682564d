"""
应用上下文

由应用根对象持有存储、嵌入服务与记忆管理器，按顺序完成启动：
打开存储 -> 加载嵌入模型 -> 补全历史记录的嵌入向量。
"""

import logging
from typing import Any, Callable, Optional

from .config import MemoryConfig
from .embedding_service import EmbeddingProvider, ProviderState, create_embedding_provider
from .memory_manager import MemoryManager
from .memory_store import MemoryStore, open_memory_store


logger = logging.getLogger(__name__)


class MemoryContext:
    """记忆模块上下文（每个会话一个实例）"""

    def __init__(
        self,
        config: MemoryConfig,
        store: MemoryStore,
        embedding_provider: EmbeddingProvider,
        manager: MemoryManager
    ):
        self.config = config
        self.store = store
        self.embedding_provider = embedding_provider
        self.manager = manager

    @classmethod
    async def create(
        cls,
        config: Optional[MemoryConfig] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
        on_count_changed: Optional[Callable[[int], Any]] = None
    ) -> 'MemoryContext':
        """
        创建上下文并打开存储（不加载模型）

        Args:
            config: 配置（为空则使用默认配置）
            embedding_provider: 嵌入服务（为空则按配置创建）
            on_count_changed: 记忆数量变化回调

        Returns:
            MemoryContext 对象
        """
        if config is None:
            config = MemoryConfig()

        store = await open_memory_store(
            db_path=config.storage.db_path,
            table_name=config.storage.table_name,
            durable=config.storage.durable
        )

        if embedding_provider is None:
            embedding_provider = create_embedding_provider(config.embedding)

        manager = MemoryManager(
            store=store,
            embedding_provider=embedding_provider,
            similarity_threshold=config.retrieval.similarity_threshold,
            max_question_length=config.limits.max_question_length,
            max_answer_length=config.limits.max_answer_length,
            default_top_k=config.retrieval.default_top_k,
            on_count_changed=on_count_changed
        )

        return cls(config, store, embedding_provider, manager)

    async def start(self, repair_embeddings: bool = True) -> ProviderState:
        """
        加载嵌入模型并补全缺失的嵌入向量

        需在处理检索请求之前调用。

        Args:
            repair_embeddings: 是否补全历史记录的嵌入向量

        Returns:
            嵌入服务状态
        """
        state = await self.embedding_provider.initialize()

        if repair_embeddings and state == ProviderState.READY:
            await self.manager.ensure_embeddings_for_all()

        logger.info(f"Memory context started: store={self.store.backend_name}, provider={state.value}")
        return state
