"""
外部数据集导入测试用例（不访问网络）
"""

import asyncio

import pytest
import requests

from test_utils import FakeEmbeddingProvider  # noqa: F401  (设置导入路径)
from zenia_memory import dataset_importer
from zenia_memory.dataset_importer import (
    DatasetImportError,
    import_dataset,
    iter_coqa_pairs,
    iter_persona_chat_pairs,
    iter_reddit_pairs,
    iter_squad_pairs,
    load_external_json,
)
from zenia_memory.embedding_service import DisabledEmbeddingProvider
from zenia_memory.memory_manager import MemoryManager
from zenia_memory.memory_store import InMemoryMemoryStore


SQUAD_SAMPLE = {
    "data": [{
        "paragraphs": [{
            "qas": [
                {"question": "Quem escreveu Os Lusíadas?", "answers": [{"text": "Luís de Camões"}]},
                {"question": "Pergunta sem resposta", "answers": []},
            ]
        }]
    }]
}


def test_iter_squad_pairs_skips_unanswered():
    """SQuAD：跳过没有答案的问题"""
    assert list(iter_squad_pairs(SQUAD_SAMPLE)) == [("Quem escreveu Os Lusíadas?", "Luís de Camões")]


def test_iter_coqa_pairs():
    """CoQA：兼容字符串与 input_text 结构"""
    data = {"data": [{
        "questions": [{"input_text": "Qual a cor do céu?"}, "E à noite?"],
        "answers": [{"input_text": "Azul"}, {"input_text": "Preto"}],
    }]}

    assert list(iter_coqa_pairs(data)) == [("Qual a cor do céu?", "Azul"), ("E à noite?", "Preto")]


def test_iter_persona_chat_pairs():
    """Persona-Chat：最后一句历史配第一个候选"""
    data = {"utterances": [
        {"history": ["olá", "tudo bem?"], "candidates": ["tudo ótimo", "mais ou menos"]},
        {"history": [], "candidates": ["ignorado"]},
    ]}

    assert list(iter_persona_chat_pairs(data)) == [("tudo bem?", "tudo ótimo")]


def test_iter_reddit_pairs():
    """Reddit：相邻两句构成问答对"""
    data = {"conversations": [["a", "b", "c"], ["único"]]}

    assert list(iter_reddit_pairs(data)) == [("a", "b"), ("b", "c")]


def test_parsers_skip_malformed_entries():
    """格式不符的条目被跳过，不抛出异常"""
    squad = {"data": [
        "oops",
        {"paragraphs": "não é lista"},
        {"paragraphs": [{"qas": [None, {"question": "Capital de Portugal?", "answers": {"text": "x"}}]}]},
        SQUAD_SAMPLE["data"][0],
    ]}
    coqa = {"data": ["oops", {"questions": "Qual?", "answers": ["Sim"]}]}
    persona = {"utterances": [42, {"history": "olá", "candidates": ["oi"]}]}

    assert list(iter_squad_pairs(squad)) == [("Quem escreveu Os Lusíadas?", "Luís de Camões")]
    assert list(iter_squad_pairs({"data": {"paragraphs": []}})) == []
    assert list(iter_coqa_pairs(coqa)) == []
    assert list(iter_persona_chat_pairs(persona)) == []


def test_iter_reddit_pairs_ignores_string_conversation():
    """Reddit：字符串对话不会被拆成单个字符"""
    data = {"conversations": ["olá", {"a": "b"}, ["pergunta", "resposta"]]}

    assert list(iter_reddit_pairs(data)) == [("pergunta", "resposta")]
    assert list(iter_reddit_pairs({"conversations": "olá"})) == []


def _manager() -> MemoryManager:
    store = InMemoryMemoryStore()
    asyncio.run(store.open())
    return MemoryManager(store=store, embedding_provider=DisabledEmbeddingProvider())


def test_import_dataset_records_pairs():
    """导入后可检索到数据集中的回答"""
    manager = _manager()
    urls = []

    def loader(url):
        urls.append(url)
        return SQUAD_SAMPLE

    imported = asyncio.run(import_dataset(manager, "squad", loader=loader))

    assert imported == 1
    assert urls == [dataset_importer.DEFAULT_DATASET_URLS["squad"]]
    assert asyncio.run(manager.retrieve("Quem escreveu Os Lusíadas?")) == "Luís de Camões"


def test_import_dataset_limit_and_failed_load():
    """支持数量限制；下载失败时导入数量为 0"""
    manager = _manager()
    data = {"conversations": [["a", "b", "c", "d"]]}

    assert asyncio.run(import_dataset(manager, "reddit", url="file://x", limit=2, loader=lambda url: data)) == 2
    assert asyncio.run(import_dataset(manager, "reddit", loader=lambda url: None)) == 0
    assert asyncio.run(manager.count()) == 2


def test_import_dataset_rejects_non_object_payload():
    """顶层不是 JSON 对象时导入数量为 0"""
    manager = _manager()

    assert asyncio.run(import_dataset(manager, "squad", loader=lambda url: [{"x": 1}])) == 0
    assert asyncio.run(import_dataset(manager, "squad", loader=lambda url: {"data": ["oops"]})) == 0
    assert asyncio.run(import_dataset(manager, "reddit", loader=lambda url: "texto")) == 0
    assert asyncio.run(manager.count()) == 0


def test_import_unknown_dataset():
    """未知数据集类型报错"""
    with pytest.raises(DatasetImportError):
        asyncio.run(import_dataset(_manager(), "wikipedia"))


def test_load_external_json_handles_errors(monkeypatch):
    """网络错误时返回 None"""
    def failing_get(url, timeout):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(dataset_importer.requests, "get", failing_get)

    assert load_external_json("https://example.invalid/data.json") is None
