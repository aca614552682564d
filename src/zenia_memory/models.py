"""
数据模型定义

定义记忆模块使用的核心数据结构：问答记忆记录与检索结果。
"""

import logging
import time
import uuid
from datetime import datetime
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


logger = logging.getLogger(__name__)

# 默认截断长度（按字符计）
DEFAULT_MAX_QUESTION_LENGTH = 1000
DEFAULT_MAX_ANSWER_LENGTH = 10000


class RecordKind(str, Enum):
    """记忆记录类型枚举"""
    QA = "qa"  # 问答对


class MatchStrategy(str, Enum):
    """检索命中所使用的策略"""
    SEMANTIC = "semantic"  # 向量余弦相似度
    LEXICAL = "lexical"  # 词汇重叠降级


def generate_record_id() -> str:
    """生成记录ID（毫秒时间戳 + 随机后缀）"""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def truncate_text(text: str, max_length: int) -> str:
    """按字符截断文本，超长时静默截断"""
    if len(text) > max_length:
        logger.debug(f"Text truncated from {len(text)} to {max_length} characters")
        return text[:max_length]
    return text


class MemoryRecord(BaseModel):
    """问答记忆记录数据模型"""

    id: str = Field(default_factory=generate_record_id, description="唯一标识符")
    kind: RecordKind = Field(default=RecordKind.QA, description="记录类型")
    question: str = Field(..., description="问题文本")
    answer: str = Field(..., description="回答文本")
    embedding: Optional[List[float]] = Field(default=None, description="问题的嵌入向量（模型不可用时为空）")
    created_at: datetime = Field(default_factory=datetime.now, description="创建时间")

    model_config = ConfigDict(use_enum_values=True)

    @classmethod
    def create(
        cls,
        question: str,
        answer: str,
        embedding: Optional[List[float]] = None,
        max_question_length: int = DEFAULT_MAX_QUESTION_LENGTH,
        max_answer_length: int = DEFAULT_MAX_ANSWER_LENGTH
    ) -> 'MemoryRecord':
        """
        创建新的问答记录（应用截断规则）

        Args:
            question: 问题文本
            answer: 回答文本
            embedding: 问题嵌入向量（可选）
            max_question_length: 问题最大长度
            max_answer_length: 回答最大长度

        Returns:
            MemoryRecord 对象
        """
        return cls(
            question=truncate_text(question, max_question_length),
            answer=truncate_text(answer, max_answer_length),
            embedding=list(embedding) if embedding is not None else None
        )

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)

    def with_embedding(self, embedding: List[float]) -> 'MemoryRecord':
        """返回补全嵌入向量后的副本，其余字段保持不变"""
        return self.model_copy(update={'embedding': list(embedding)})

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return self.model_dump(mode='json')

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MemoryRecord':
        """从字典创建对象"""
        data = dict(data)
        if isinstance(data.get('created_at'), str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        return cls(**data)


class MemoryMatch(BaseModel):
    """检索命中结果数据模型"""

    record: MemoryRecord = Field(..., description="命中的记忆记录")
    score: float = Field(..., description="得分（余弦相似度或词汇重叠数）")
    strategy: MatchStrategy = Field(..., description="命中策略")

    model_config = ConfigDict(use_enum_values=True)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return self.model_dump(mode='json')
