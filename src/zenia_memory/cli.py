"""
命令行入口

用法示例:
    zenia-memory ask "qual o teu nome"
    zenia-memory remember "qual o teu nome" "Chamo-me Zenia"
    zenia-memory import squad --limit 500
    zenia-memory repair
    zenia-memory stats
    zenia-memory clear --yes
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from .config import DEFAULT_CONFIG_PATH, MemoryConfig, load_config
from .context import MemoryContext
from .dataset_importer import DATASET_PARSERS, import_dataset
from .embedding_service import EmbeddingProvider


logger = logging.getLogger(__name__)

FALLBACK_RESPONSE = "Desculpa, ainda não sei responder a isso."


def build_parser() -> argparse.ArgumentParser:
    """构建命令行解析器"""
    parser = argparse.ArgumentParser(
        prog="zenia-memory",
        description="Zenia 本地语义记忆工具",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="配置文件路径")
    parser.add_argument("--no-embedding", action="store_true", help="禁用嵌入模型，仅使用词汇匹配")
    parser.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")

    subparsers = parser.add_subparsers(dest="command", required=True)

    ask = subparsers.add_parser("ask", help="检索最相近的历史回答")
    ask.add_argument("query", help="查询文本")
    ask.add_argument("--top-k", type=int, default=None, help="返回回答数量")

    remember = subparsers.add_parser("remember", help="记录问答对")
    remember.add_argument("question", help="问题")
    remember.add_argument("answer", help="回答")

    importer = subparsers.add_parser("import", help="导入外部数据集")
    importer.add_argument("dataset", choices=sorted(DATASET_PARSERS), help="数据集类型")
    importer.add_argument("--url", default=None, help="数据集地址（默认使用官方地址）")
    importer.add_argument("--limit", type=int, default=None, help="最多导入数量")

    subparsers.add_parser("repair", help="为缺少嵌入向量的记录补全向量")
    subparsers.add_parser("stats", help="显示统计信息")

    clear = subparsers.add_parser("clear", help="删除全部记忆")
    clear.add_argument("--yes", action="store_true", help="确认删除")

    return parser


def setup_logging(config: MemoryConfig, verbose: bool = False):
    """配置日志"""
    level = logging.DEBUG if verbose else getattr(logging, config.logging.level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=config.logging.format)


async def run_command(
    args: argparse.Namespace,
    config: MemoryConfig,
    embedding_provider: Optional[EmbeddingProvider] = None
) -> int:
    """执行子命令，返回退出码（embedding_provider 为空时按配置创建）"""
    context = await MemoryContext.create(config, embedding_provider=embedding_provider)
    manager = context.manager

    # clear 与 stats 不需要加载模型；其余命令启动时补全缺失的向量
    if args.command not in ("clear", "stats"):
        await context.start()

    if args.command == "ask":
        answer = await manager.retrieve(args.query, top_k=args.top_k)
        print(answer if answer is not None else FALLBACK_RESPONSE)

    elif args.command == "remember":
        record_id = await manager.record(args.question, args.answer)
        if record_id is None:
            print("记录失败", file=sys.stderr)
            return 1
        print(record_id)

    elif args.command == "import":
        imported = await import_dataset(manager, args.dataset, url=args.url, limit=args.limit)
        print(f"{imported} pairs imported")

    elif args.command == "repair":
        stats = await manager.get_statistics()
        print(f"{stats.get('embedded_records', 0)}/{stats.get('total_records', 0)} records embedded")

    elif args.command == "stats":
        print(json.dumps(await manager.get_statistics(), ensure_ascii=False, indent=2))

    elif args.command == "clear":
        if not args.yes:
            print("请使用 --yes 确认删除全部记忆", file=sys.stderr)
            return 1
        return 0 if await manager.clear_all(confirm=True) else 1

    return 0


def main(argv: Optional[List[str]] = None, embedding_provider: Optional[EmbeddingProvider] = None) -> int:
    """命令行主函数"""
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    if args.no_embedding:
        config.embedding.enabled = False

    setup_logging(config, args.verbose)
    return asyncio.run(run_command(args, config, embedding_provider))


if __name__ == "__main__":
    sys.exit(main())
