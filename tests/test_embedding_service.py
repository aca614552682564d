"""
嵌入服务测试用例（不下载真实模型）
"""

import asyncio
import sys
import types

from test_utils import FakeEmbeddingProvider
from zenia_memory.config import EmbeddingConfig
from zenia_memory.embedding_service import (
    DisabledEmbeddingProvider,
    ProviderState,
    SentenceTransformerEmbeddingService,
    create_embedding_provider,
)


def test_initialize_loads_once():
    """重复初始化只加载一次模型"""
    provider = FakeEmbeddingProvider(default=[1.0, 0.0, 0.0])

    assert provider.state == ProviderState.UNINITIALIZED
    assert asyncio.run(provider.initialize()) == ProviderState.READY
    assert asyncio.run(provider.initialize()) == ProviderState.READY
    assert provider.load_count == 1
    assert provider.dimension == 3


def test_concurrent_initialize_loads_once():
    """并发初始化只加载一次模型"""
    provider = FakeEmbeddingProvider(default=[1.0])

    async def run():
        return await asyncio.gather(*(provider.initialize() for _ in range(5)))

    assert set(asyncio.run(run())) == {ProviderState.READY}
    assert provider.load_count == 1


def test_failed_load_is_permanent():
    """加载失败后保持不可用，不自动重试，embed 返回 None"""
    provider = FakeEmbeddingProvider(default=[1.0], fail_load=True)

    assert asyncio.run(provider.initialize()) == ProviderState.UNAVAILABLE
    assert asyncio.run(provider.initialize()) == ProviderState.UNAVAILABLE
    assert provider.load_count == 1
    assert asyncio.run(provider.embed("olá")) is None
    assert provider.encoded == []


def test_embed_before_initialize_returns_none():
    """未初始化时 embed 直接返回 None"""
    provider = FakeEmbeddingProvider(default=[1.0])
    assert asyncio.run(provider.embed("olá")) is None


def test_embed_failure_returns_none():
    """单次计算失败返回 None 而不抛出异常"""
    provider = FakeEmbeddingProvider(vectors={"olá": [1.0, 0.0]}, fail_texts={"erro"})
    asyncio.run(provider.initialize())

    assert asyncio.run(provider.embed("olá")) == [1.0, 0.0]
    assert asyncio.run(provider.embed("erro")) is None
    assert asyncio.run(provider.embed("desconhecido")) is None
    assert provider.is_ready


def test_disabled_provider():
    """禁用的嵌入服务始终不可用"""
    provider = DisabledEmbeddingProvider()
    assert asyncio.run(provider.initialize()) == ProviderState.UNAVAILABLE
    assert asyncio.run(provider.embed("olá")) is None


def test_create_embedding_provider():
    """根据配置选择实现"""
    assert isinstance(create_embedding_provider(EmbeddingConfig(enabled=False)), DisabledEmbeddingProvider)

    provider = create_embedding_provider(EmbeddingConfig(device="cpu", max_length=128))
    assert isinstance(provider, SentenceTransformerEmbeddingService)
    assert provider.max_length == 128
    assert provider.state == ProviderState.UNINITIALIZED


def test_missing_local_model_without_download(tmp_path):
    """本地模型缺失且禁止下载时进入不可用状态"""
    provider = SentenceTransformerEmbeddingService(
        model_path=str(tmp_path / "missing-model"),
        auto_download=False
    )

    assert asyncio.run(provider.initialize()) == ProviderState.UNAVAILABLE
    assert asyncio.run(provider.embed("olá")) is None


def test_check_model_exists(tmp_path):
    """需要 config.json 和权重文件"""
    provider = SentenceTransformerEmbeddingService(model_path=str(tmp_path))
    assert not provider.check_model_exists(str(tmp_path))

    (tmp_path / "config.json").write_text("{}")
    assert not provider.check_model_exists(str(tmp_path))

    (tmp_path / "model.safetensors").write_bytes(b"")
    assert provider.check_model_exists(str(tmp_path))


def test_preprocess_text():
    """去除多余空白并截断"""
    provider = SentenceTransformerEmbeddingService(max_length=4)

    assert provider._preprocess_text("  qual   o\nteu nome ") == "qual o t"


def test_download_model_from_modelscope_writes_target_dir(tmp_path, monkeypatch):
    """ModelScope 镜像直接下载到 model_path"""
    calls = []

    def snapshot_download(model_id, local_dir):
        calls.append((model_id, local_dir))
        (tmp_path / "model" / "config.json").write_text("{}")
        (tmp_path / "model" / "pytorch_model.bin").write_bytes(b"")
        return local_dir

    monkeypatch.setitem(sys.modules, "modelscope", types.SimpleNamespace(snapshot_download=snapshot_download))
    provider = SentenceTransformerEmbeddingService(
        model_name="damo/zenia-test",
        model_path=str(tmp_path / "model"),
        download_mirror="modelscope"
    )

    assert provider.download_model()
    assert calls == [("damo/zenia-test", str(tmp_path / "model"))]


def test_download_model_without_backend(tmp_path, monkeypatch):
    """镜像依赖未安装时下载失败，不抛出异常"""
    monkeypatch.setitem(sys.modules, "modelscope", None)
    provider = SentenceTransformerEmbeddingService(
        model_path=str(tmp_path / "model"),
        download_mirror="modelscope"
    )

    assert provider.download_model() is False
    assert not provider.check_model_exists(str(tmp_path / "model"))
