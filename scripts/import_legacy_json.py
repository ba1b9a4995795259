#!/usr/bin/env python3
"""
数据迁移脚本：把旧版 JSON 数据文件导入数据库

读取 data 目录下的:
    rules.json      -> rules
    logs.json       -> webhook_logs (旧文件新的在前，按时间顺序导入)
    polls.json      -> polls
    settings.json   -> system_config.global_bot_token

用法：
    python scripts/import_legacy_json.py [data_dir]

数据库连接取自 DATABASE_URL，未设置时使用默认 SQLite 文件。
"""
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

# 将项目根目录添加到 Python 路径
sys.path.insert(0, str(Path(__file__).parent.parent))

from relay_service.config import GLOBAL_BOT_TOKEN_KEY, normalize_token
from relay_service.database import database_lifespan, get_db_manager
from relay_service.repository import (
    get_rule_repository,
    get_webhook_log_repository,
    get_poll_repository,
    get_system_config_repository,
)
from relay_service.services.poller import normalize_poll

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


def load_json_file(path: Path, default):
    """读取 JSON 文件，不存在时返回 default"""
    if not path.exists():
        print(f"  ℹ️ {path.name} 不存在，跳过")
        return default
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def parse_timestamp(value) -> datetime | None:
    """解析 ISO 时间 (支持 Z 结尾)，转换为 UTC naive 时间"""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _chat_ids(value) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [str(c).strip() for c in value if c is not None and str(c).strip()]


async def import_data(data_dir: Path) -> dict:
    """
    导入旧版数据

    Returns:
        各类数据的导入条数
    """
    rules = load_json_file(data_dir / "rules.json", [])
    logs = load_json_file(data_dir / "logs.json", [])
    polls = load_json_file(data_dir / "polls.json", [])
    settings = load_json_file(data_dir / "settings.json", {})

    counts = {"rules": 0, "logs": 0, "polls": 0, "token": 0}

    async with get_db_manager().get_session() as session:
        rule_repo = get_rule_repository(session)
        for item in rules:
            if not isinstance(item, dict):
                continue
            chat_id = item.get("chatId")
            await rule_repo.create(
                name=str(item.get("name") or ""),
                condition=str(item.get("condition") or ""),
                bot_token=normalize_token(item.get("botToken")) or "",
                chat_id=str(chat_id).strip() if chat_id is not None else None,
                chat_ids=_chat_ids(item.get("chatIds")),
                message_template=item.get("messageTemplate") or "",
                enabled=item.get("enabled") is not False,
            )
            counts["rules"] += 1

        log_repo = get_webhook_log_repository(session)
        for item in reversed(logs):
            if not isinstance(item, dict):
                continue
            await log_repo.create(
                payload=item.get("payload"),
                matched=int(item.get("matched") or 0),
                total_rules=int(item.get("total_rules") or 0),
                telegram_results=item.get("telegram_results") or [],
                timestamp=parse_timestamp(item.get("timestamp")),
            )
            counts["logs"] += 1

        poll_repo = get_poll_repository(session)
        for item in polls:
            if not isinstance(item, dict):
                continue
            fields = normalize_poll(item)
            if not fields["name"] or not fields["url"] or not fields["chat_id"]:
                print(f"  ⚠️ 轮询缺少 name/url/chatId，跳过: {item.get('id')}")
                continue
            fields["last_match"] = item.get("lastMatch") is True
            fields["last_error"] = item.get("lastError") or None
            fields["last_checked_at"] = parse_timestamp(item.get("lastCheckedAt"))
            await poll_repo.create(**fields)
            counts["polls"] += 1

        token = normalize_token(settings.get("global_bot_token")) if isinstance(settings, dict) else None
        if token:
            await get_system_config_repository(session).set(
                GLOBAL_BOT_TOKEN_KEY, token, description="全局 Telegram Bot Token"
            )
            counts["token"] = 1

    return counts


async def main(data_dir: Path):
    print(f"开始导入: {data_dir}")
    async with database_lifespan():
        counts = await import_data(data_dir)

    print("\n导入完成！")
    print(f"  - 规则: {counts['rules']} 条")
    print(f"  - 日志: {counts['logs']} 条")
    print(f"  - 轮询: {counts['polls']} 个")
    print(f"  - 全局 Token: {'已导入' if counts['token'] else '无'}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)
    data_dir = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_DATA_DIR
    if not data_dir.is_dir():
        print(f"错误: 数据目录不存在: {data_dir}")
        print("用法: python scripts/import_legacy_json.py <data_dir>")
        sys.exit(1)

    asyncio.run(main(data_dir))
