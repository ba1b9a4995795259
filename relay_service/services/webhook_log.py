"""
Webhook 日志记录

每个处理周期写一条日志，只保留最近 100 条。
写入失败只记录错误日志，不影响 Webhook 的响应。
"""
import logging
from typing import Any, Optional

from ..database import get_db_manager
from ..repository import get_webhook_log_repository, MAX_WEBHOOK_LOGS

logger = logging.getLogger(__name__)


async def record_webhook(
    payload: Any,
    matched: int,
    total_rules: int,
    results: list[dict],
    keep: int = MAX_WEBHOOK_LOGS,
) -> Optional[int]:
    """
    记录一次 Webhook 处理

    Args:
        payload: 收到的原始请求体
        matched: 匹配的规则数
        total_rules: 参与求值的规则总数
        results: 发送结果列表
        keep: 最多保留的日志条数

    Returns:
        日志 ID，写入失败时返回 None
    """
    try:
        async with get_db_manager().get_session() as session:
            repo = get_webhook_log_repository(session)
            log = await repo.create(
                payload=payload,
                matched=matched,
                total_rules=total_rules,
                telegram_results=results,
                keep=keep,
            )
            log_id = log.id
        logger.debug(f"记录 Webhook 日志: id={log_id}, matched={matched}")
        return log_id
    except Exception as e:
        logger.error(f"记录 Webhook 日志失败: {e}", exc_info=True)
        return None
