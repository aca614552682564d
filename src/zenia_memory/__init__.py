"""
Zenia 本地语义记忆模块

存储用户问答对，检索与新问题最相近的历史回答：
语义向量检索（余弦相似度 + 置信度阈值），不可用或置信度不足时降级为词汇匹配。

主要组件:
- MemoryManager: 记忆管理器（核心协调者）
- MemoryStore: 记忆存储（SQLite / 进程内降级）
- EmbeddingProvider: 文本嵌入服务
- similarity: 相似度计算
- MemoryContext: 应用上下文与启动流程
"""

__version__ = "0.1.0"

# 导出主要接口
from .config import MemoryConfig, load_config
from .context import MemoryContext
from .embedding_service import (
    EmbeddingProvider,
    ProviderState,
    SentenceTransformerEmbeddingService,
    DisabledEmbeddingProvider,
)
from .memory_manager import MemoryManager, MemoryManagerError
from .memory_store import (
    MemoryStore,
    StoreState,
    SQLiteMemoryStore,
    InMemoryMemoryStore,
    open_memory_store,
)
from .models import MemoryRecord, MemoryMatch, MatchStrategy, RecordKind
from .similarity import cosine_similarity, lexical_overlap_score

__all__ = [
    "MemoryConfig",
    "load_config",
    "MemoryContext",
    "EmbeddingProvider",
    "ProviderState",
    "SentenceTransformerEmbeddingService",
    "DisabledEmbeddingProvider",
    "MemoryManager",
    "MemoryManagerError",
    "MemoryStore",
    "StoreState",
    "SQLiteMemoryStore",
    "InMemoryMemoryStore",
    "open_memory_store",
    "MemoryRecord",
    "MemoryMatch",
    "MatchStrategy",
    "RecordKind",
    "cosine_similarity",
    "lexical_overlap_score",
]
