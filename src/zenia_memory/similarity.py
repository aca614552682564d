"""
相似度计算模块

纯函数实现：向量余弦相似度与词汇重叠得分。
"""

import re
from typing import List, Optional, Sequence

import numpy as np


_TOKEN_SPLIT_PATTERN = re.compile(r"\W+")


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """
    计算两个向量的余弦相似度

    任一向量为空、模长为零或维度不一致时返回 -1（视为不相似）。

    Args:
        a: 向量1
        b: 向量2

    Returns:
        相似度（-1 到 1）
    """
    if a is None or b is None or len(a) == 0 or len(b) == 0 or len(a) != len(b):
        return -1.0

    vec1 = np.asarray(a, dtype=np.float64)
    vec2 = np.asarray(b, dtype=np.float64)

    norm1 = np.linalg.norm(vec1)
    norm2 = np.linalg.norm(vec2)
    if norm1 == 0 or norm2 == 0:
        return -1.0

    similarity = float(np.dot(vec1, vec2) / (norm1 * norm2))
    # 浮点误差可能略超出范围
    return max(-1.0, min(1.0, similarity))


def tokenize(text: str) -> List[str]:
    """按非单词字符切分小写文本，丢弃空词"""
    return [token for token in _TOKEN_SPLIT_PATTERN.split(text.lower()) if token]


def lexical_overlap_score(query_text: str, candidate_text: str) -> int:
    """
    计算词汇重叠得分

    统计查询中有多少个词作为子串出现在候选文本中（不区分大小写）。
    这是粗粒度的降级匹配，不做进一步的排序处理。

    Args:
        query_text: 查询文本
        candidate_text: 候选文本

    Returns:
        命中的词数
    """
    candidate = candidate_text.lower()
    return sum(1 for token in tokenize(query_text) if token in candidate)
