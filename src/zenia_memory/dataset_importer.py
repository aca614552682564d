"""
外部数据集导入模块

从公开问答/对话数据集（SQuAD、CoQA、QuAC、Persona-Chat、Reddit）提取问答对，
写入记忆库作为初始知识。格式不符的条目会被跳过。
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import requests

from .memory_manager import MemoryManager


logger = logging.getLogger(__name__)

QAPair = Tuple[str, str]

DEFAULT_DATASET_URLS = {
    "squad": "https://rajpurkar.github.io/SQuAD-explorer/dataset/train-v1.1.json",
    "coqa": "https://nlp.stanford.edu/data/coqa/coqa-train-v1.0.json",
    "quac": "https://s3.amazonaws.com/my89public/quac/train_v0.2.json",
    "persona_chat": "https://raw.githubusercontent.com/facebookresearch/ParlAI/main/parlai/tasks/convai2/train.json",
    "reddit": "https://raw.githubusercontent.com/poly-ai/reddit-conversational-dataset/master/sample.json",
}


class DatasetImportError(Exception):
    """数据集导入异常"""
    pass


def _text(value: Any) -> Optional[str]:
    """提取文本（兼容 CoQA 的 {"input_text": ...} 结构）"""
    if isinstance(value, dict):
        value = value.get('input_text') or value.get('text')
    if isinstance(value, str) and value.strip():
        return value
    return None


def _items(container: Any, key: str) -> List[Any]:
    """取出 container[key] 列表；结构不符时返回空列表"""
    if not isinstance(container, dict):
        return []
    value = container.get(key)
    return value if isinstance(value, list) else []


def _dicts(container: Any, key: str) -> Iterator[Dict[str, Any]]:
    """遍历 container[key] 中的字典条目，其余条目跳过"""
    for item in _items(container, key):
        if isinstance(item, dict):
            yield item


def _iter_paragraph_qas(data: Dict[str, Any]) -> Iterator[QAPair]:
    """SQuAD / QuAC 共用的 data -> paragraphs -> qas 结构"""
    for entry in _dicts(data, 'data'):
        for paragraph in _dicts(entry, 'paragraphs'):
            for qa in _dicts(paragraph, 'qas'):
                answers = _items(qa, 'answers')
                question = _text(qa.get('question'))
                answer = _text(answers[0]) if answers else None
                if question and answer:
                    yield question, answer


def iter_squad_pairs(data: Dict[str, Any]) -> Iterator[QAPair]:
    """SQuAD：每个问题取第一个答案"""
    return _iter_paragraph_qas(data)


def iter_quac_pairs(data: Dict[str, Any]) -> Iterator[QAPair]:
    """QuAC：结构与 SQuAD 相同"""
    return _iter_paragraph_qas(data)


def iter_coqa_pairs(data: Dict[str, Any]) -> Iterator[QAPair]:
    """CoQA：questions 与 answers 按下标配对"""
    for story in _dicts(data, 'data'):
        questions = _items(story, 'questions')
        answers = _items(story, 'answers')
        for raw_question, raw_answer in zip(questions, answers):
            question, answer = _text(raw_question), _text(raw_answer)
            if question and answer:
                yield question, answer


def iter_persona_chat_pairs(data: Dict[str, Any]) -> Iterator[QAPair]:
    """Persona-Chat：历史中最后一句作为问题，第一个候选作为回答"""
    for utterance in _dicts(data, 'utterances'):
        history = _items(utterance, 'history')
        candidates = _items(utterance, 'candidates')
        if history and candidates:
            question, answer = _text(history[-1]), _text(candidates[0])
            if question and answer:
                yield question, answer


def iter_reddit_pairs(data: Dict[str, Any]) -> Iterator[QAPair]:
    """Reddit：对话中相邻两句构成问答对"""
    for conversation in _items(data, 'conversations'):
        # 对话必须是句子列表
        if not isinstance(conversation, list):
            continue
        for current, following in zip(conversation, conversation[1:]):
            question, answer = _text(current), _text(following)
            if question and answer:
                yield question, answer


DATASET_PARSERS: Dict[str, Callable[[Dict[str, Any]], Iterator[QAPair]]] = {
    "squad": iter_squad_pairs,
    "coqa": iter_coqa_pairs,
    "quac": iter_quac_pairs,
    "persona_chat": iter_persona_chat_pairs,
    "reddit": iter_reddit_pairs,
}


def load_external_json(url: str, timeout: float = 60.0) -> Optional[Dict[str, Any]]:
    """
    下载 JSON 数据集

    Args:
        url: 数据集地址
        timeout: 请求超时（秒）

    Returns:
        解析后的 JSON，失败时为 None
    """
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        return response.json()
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Failed to load dataset {url}: {e}")
        return None


async def import_dataset(
    manager: MemoryManager,
    kind: str,
    url: Optional[str] = None,
    limit: Optional[int] = None,
    loader: Callable[[str], Optional[Dict[str, Any]]] = load_external_json
) -> int:
    """
    导入数据集到记忆库

    Args:
        manager: 记忆管理器
        kind: 数据集类型（squad/coqa/quac/persona_chat/reddit）
        url: 数据集地址（为空则使用默认地址）
        limit: 最多导入的问答对数量
        loader: JSON 加载函数

    Returns:
        成功写入的问答对数量

    Raises:
        DatasetImportError: 未知数据集类型
    """
    parser = DATASET_PARSERS.get(kind)
    if parser is None:
        raise DatasetImportError(f"Unknown dataset kind: {kind}")

    url = url or DEFAULT_DATASET_URLS[kind]
    data = await asyncio.to_thread(loader, url)
    if not data:
        return 0
    if not isinstance(data, dict):
        logger.error(f"Dataset '{kind}' from {url} is not a JSON object: {type(data).__name__}")
        return 0

    imported = 0
    for question, answer in parser(data):
        if limit is not None and imported >= limit:
            break
        if await manager.record(question, answer):
            imported += 1

    logger.info(f"Dataset '{kind}' imported: {imported} pairs")
    return imported
