"""
文本嵌入服务模块

负责将文本转换为向量表示，管理嵌入模型的下载、加载与推理。
模型加载失败时服务进入不可用状态，调用方降级为词汇匹配。
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

from .config import EmbeddingConfig


logger = logging.getLogger(__name__)

MODEL_WEIGHT_FILES = ("model.safetensors", "pytorch_model.bin")


class EmbeddingServiceError(Exception):
    """嵌入服务异常基类"""
    pass


class ModelNotFoundError(EmbeddingServiceError):
    """模型未找到异常"""
    pass


class ProviderState(str, Enum):
    """嵌入服务状态"""
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    UNAVAILABLE = "unavailable"


class EmbeddingProvider(ABC):
    """
    嵌入服务接口

    initialize() 在进程生命周期内只加载一次模型，失败后保持不可用；
    embed() 在不可用时直接返回 None，从不抛出异常。
    子类实现 _load() 与 _encode()。
    """

    def __init__(self):
        self._state = ProviderState.UNINITIALIZED
        self._dimension: Optional[int] = None
        self._init_lock = asyncio.Lock()

    @property
    def state(self) -> ProviderState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == ProviderState.READY

    @property
    def dimension(self) -> Optional[int]:
        """向量维度（未知时为 None）"""
        return self._dimension

    async def initialize(self) -> ProviderState:
        """
        加载模型（仅执行一次）

        Returns:
            加载后的服务状态
        """
        async with self._init_lock:
            if self._state != ProviderState.UNINITIALIZED:
                return self._state

            try:
                await self._load()
                self._state = ProviderState.READY
                logger.info(f"{self.__class__.__name__} ready. Dimension: {self._dimension}")
            except Exception as e:
                self._state = ProviderState.UNAVAILABLE
                logger.warning(f"Embedding provider unavailable, using lexical fallback: {e}")

            return self._state

    async def embed(self, text: str) -> Optional[List[float]]:
        """
        单文本嵌入

        Args:
            text: 输入文本

        Returns:
            嵌入向量，服务不可用或计算失败时为 None
        """
        if not self.is_ready:
            return None

        try:
            return await self._encode(text)
        except Exception as e:
            logger.error(f"Failed to encode text: {e}")
            return None

    @abstractmethod
    async def _load(self) -> None:
        """加载模型，失败时抛出异常"""

    @abstractmethod
    async def _encode(self, text: str) -> List[float]:
        """计算嵌入向量，失败时抛出异常"""


class DisabledEmbeddingProvider(EmbeddingProvider):
    """禁用的嵌入服务（始终不可用）"""

    async def _load(self) -> None:
        raise EmbeddingServiceError("Embedding disabled by configuration")

    async def _encode(self, text: str) -> List[float]:
        raise EmbeddingServiceError("Embedding disabled by configuration")


class SentenceTransformerEmbeddingService(EmbeddingProvider):
    """
    文本嵌入服务

    使用 sentence-transformers 加载多语言句向量模型
    支持本地模型路径和自动下载
    """

    def __init__(
        self,
        model_name: str = "sentence-transformers/distiluse-base-multilingual-cased-v2",
        model_path: Optional[str] = None,
        device: str = "cpu",
        max_length: int = 512,
        auto_download: bool = True,
        download_mirror: str = "huggingface"
    ):
        """
        初始化嵌入服务（不加载模型，加载在 initialize() 中进行）

        Args:
            model_name: 模型名称
            model_path: 模型本地路径（为空则由 sentence-transformers 管理缓存）
            device: 运行设备（cuda/cpu）
            max_length: 文本最大长度
            auto_download: 本地路径缺失时是否自动下载
            download_mirror: 下载镜像源（huggingface/modelscope）
        """
        super().__init__()
        self.model_name = model_name
        self.model_path = Path(model_path) if model_path else None
        self.device = device
        self.max_length = max_length
        self.auto_download = auto_download
        self.download_mirror = download_mirror

        self.model: Any = None

    async def _load(self) -> None:
        await asyncio.to_thread(self._load_model)

    def _load_model(self):
        """加载模型（必要时先下载）"""
        model_source = self.model_name

        if self.model_path is not None:
            if not self.check_model_exists(str(self.model_path)):
                if not self.auto_download:
                    raise ModelNotFoundError(
                        f"Model not found at: {self.model_path}. "
                        f"Please set auto_download=True or manually download the model."
                    )
                if not self.download_model():
                    raise ModelNotFoundError(
                        f"Model not found and download failed. "
                        f"Please manually download to: {self.model_path}"
                    )
            model_source = str(self.model_path)

        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise EmbeddingServiceError(
                "sentence-transformers not installed. "
                "Please install: pip install sentence-transformers"
            ) from e

        logger.info(f"Loading model from: {model_source} (device={self.device})")
        self.model = SentenceTransformer(model_source, device=self.device)
        self._dimension = self.model.get_sentence_embedding_dimension()

    def check_model_exists(self, model_path: str) -> bool:
        """目录中是否有可加载的模型（config.json 与权重文件）"""
        model_dir = Path(model_path)
        if not (model_dir / "config.json").is_file():
            return False
        return any((model_dir / name).is_file() for name in MODEL_WEIGHT_FILES)

    def download_model(self) -> bool:
        """
        将 model_name 下载到 model_path

        modelscope 镜像直接写入目标目录；huggingface 经 sentence-transformers 加载后保存。

        Returns:
            下载后目录中是否有可加载的模型
        """
        target = str(self.model_path)
        self.model_path.mkdir(parents=True, exist_ok=True)
        logger.info(f"Downloading {self.model_name} from {self.download_mirror} to {target}")

        try:
            if self.download_mirror == "modelscope":
                from modelscope import snapshot_download
                snapshot_download(self.model_name, local_dir=target)
            else:
                from sentence_transformers import SentenceTransformer
                SentenceTransformer(self.model_name, device=self.device).save(target)
        except ImportError as e:
            logger.error(f"Download backend for '{self.download_mirror}' is not installed: {e}")
            return False
        except Exception as e:
            logger.error(f"Model download failed: {e}")
            return False

        return self.check_model_exists(target)

    async def _encode(self, text: str) -> List[float]:
        text = self._preprocess_text(text)
        embedding = await asyncio.to_thread(
            self.model.encode,
            text,
            normalize_embeddings=True,
            show_progress_bar=False
        )
        return embedding.tolist()

    def _preprocess_text(self, text: str) -> str:
        """合并空白字符，并按字符数粗略截断（约每 token 两个字符）"""
        return " ".join(text.split())[:self.max_length * 2]

    def __repr__(self) -> str:
        return f"SentenceTransformerEmbeddingService(model={self.model_name!r}, device={self.device!r})"


def create_embedding_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    """
    根据配置创建嵌入服务

    Args:
        config: 嵌入模型配置

    Returns:
        嵌入服务实例（尚未初始化）
    """
    if not config.enabled:
        logger.info("Embedding disabled, memory retrieval will be lexical only")
        return DisabledEmbeddingProvider()

    return SentenceTransformerEmbeddingService(
        model_name=config.model_name,
        model_path=config.model_path,
        device=config.device,
        max_length=config.max_length,
        auto_download=config.auto_download,
        download_mirror=config.download_mirror
    )
