"""
配置加载模块

从 YAML 文件读取记忆模块配置，缺失或无法解析时回退到默认值。
"""

import logging
from pathlib import Path
from typing import Optional, Dict, Any

import yaml
from pydantic import BaseModel, Field

from .models import DEFAULT_MAX_QUESTION_LENGTH, DEFAULT_MAX_ANSWER_LENGTH


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/memory_config.yaml"


class StorageConfig(BaseModel):
    """存储配置"""
    db_path: str = Field(default="data/memory/zenia_memory.db", description="SQLite 数据库路径")
    table_name: str = Field(default="memories", description="记忆表名")
    durable: bool = Field(default=True, description="是否使用持久化存储（否则仅内存）")


class EmbeddingConfig(BaseModel):
    """嵌入模型配置"""
    enabled: bool = Field(default=True, description="是否启用嵌入模型")
    model_name: str = Field(
        default="sentence-transformers/distiluse-base-multilingual-cased-v2",
        description="模型名称"
    )
    model_path: Optional[str] = Field(default=None, description="模型本地路径（为空则使用缓存）")
    device: str = Field(default="cpu", description="运行设备（cuda/cpu）")
    max_length: int = Field(default=512, gt=0, description="文本最大长度")
    auto_download: bool = Field(default=True, description="本地路径缺失时是否自动下载")
    download_mirror: str = Field(default="huggingface", description="下载镜像源（huggingface/modelscope）")


class RetrievalConfig(BaseModel):
    """检索配置"""
    similarity_threshold: float = Field(default=0.55, ge=-1.0, le=1.0, description="语义检索置信度阈值")
    default_top_k: int = Field(default=1, ge=1, description="默认返回数量")


class LimitsConfig(BaseModel):
    """文本长度限制"""
    max_question_length: int = Field(default=DEFAULT_MAX_QUESTION_LENGTH, gt=0, description="问题最大字符数")
    max_answer_length: int = Field(default=DEFAULT_MAX_ANSWER_LENGTH, gt=0, description="回答最大字符数")


class LoggingConfig(BaseModel):
    """日志配置"""
    level: str = Field(default="INFO", description="日志级别")
    format: str = Field(
        default='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        description="日志格式"
    )


class MemoryConfig(BaseModel):
    """记忆模块完整配置"""
    storage: StorageConfig = Field(default_factory=StorageConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return self.model_dump(mode='json')


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> MemoryConfig:
    """
    加载配置文件

    Args:
        config_path: 配置文件路径

    Returns:
        MemoryConfig 对象（文件缺失或无效时为默认配置）
    """
    config_file = Path(config_path)
    if not config_file.exists():
        logger.warning(f"Config file not found: {config_path}, using defaults")
        return MemoryConfig()

    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        config = MemoryConfig.model_validate(data)
        logger.info(f"Config loaded from: {config_path}")
        return config

    except Exception as e:
        logger.error(f"Failed to load config: {e}, using defaults")
        return MemoryConfig()
