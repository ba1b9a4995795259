"""
规则分发

一次 Webhook 的处理周期:
对每条启用的规则求值条件 → 匹配时格式化消息 → 确定 Token 与目标聊天 → 逐个发送 → 汇总结果

单条规则、单个聊天的失败都只记录到结果中，不会中断整个周期。
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from ..condition import matches
from ..config import normalize_token
from ..formatter import format_message

logger = logging.getLogger(__name__)

NO_TOKEN_ERROR = "No bot token configured"
NO_CHAT_ERROR = "No chatId configured"


@dataclass
class DispatchOutcome:
    """一次分发的结果"""
    matched: int = 0
    total_rules: int = 0
    results: list[dict] = field(default_factory=list)

    @property
    def sent(self) -> int:
        """发送成功的条数"""
        return sum(1 for result in self.results if result.get("success"))


class Dispatcher:
    """
    规则分发器

    Args:
        sink: 通知发送端，需提供 async send(token, chat_id, text) -> dict
        default_token: 规则未设置 botToken 时使用的全局 Token
    """

    def __init__(self, sink, default_token: Optional[str] = None):
        self.sink = sink
        self.default_token = normalize_token(default_token)

    def resolve_token(self, rule) -> Optional[str]:
        """规则自己的 Token 优先，其次是全局 Token"""
        return normalize_token(getattr(rule, "bot_token", None)) or self.default_token

    async def dispatch(self, payload: Any, rules: Iterable, raw_body: Any = None) -> DispatchOutcome:
        """
        按规则分发 payload

        Args:
            payload: 用于条件求值和格式化的数据
            rules: 规则列表 (按存储顺序)
            raw_body: 原始请求体，格式化时用于读取 event / person_name 等信封字段

        Returns:
            DispatchOutcome
        """
        rules = list(rules)
        outcome = DispatchOutcome(total_rules=len(rules))
        envelope = payload if raw_body is None else raw_body

        for rule in rules:
            if rule is None or getattr(rule, "enabled", True) is False:
                continue
            if not matches(rule, payload):
                continue

            outcome.matched += 1
            try:
                await self._deliver(rule, envelope, payload, outcome.results)
            except Exception as e:
                logger.error(f"规则 {rule.id} 处理失败: {e}", exc_info=True)
                outcome.results.append({
                    "chatId": getattr(rule, "chat_id", None) or None,
                    "success": False,
                    "error": str(e),
                })

        logger.info(
            f"分发完成: rules={outcome.total_rules}, matched={outcome.matched}, "
            f"sent={outcome.sent}/{len(outcome.results)}"
        )
        return outcome

    async def _deliver(self, rule, envelope: Any, payload: Any, results: list[dict]):
        """发送一条已匹配的规则"""
        text = format_message(envelope, payload, getattr(rule, "message_template", None))

        token = self.resolve_token(rule)
        if not token:
            logger.warning(f"规则 {rule.id} 没有可用的 Bot Token")
            results.append({
                "chatId": getattr(rule, "chat_id", None) or None,
                "success": False,
                "error": NO_TOKEN_ERROR,
            })
            return

        chat_ids = rule.get_chat_ids()
        if not chat_ids:
            logger.warning(f"规则 {rule.id} 没有配置 chatId")
            results.append({"chatId": None, "success": False, "error": NO_CHAT_ERROR})
            return

        for chat_id in chat_ids:
            try:
                result = await self.sink.send(token, chat_id, text)
            except Exception as e:
                logger.error(f"发送到 {chat_id} 失败: {e}", exc_info=True)
                result = {"success": False, "error": str(e)}
            results.append({"chatId": chat_id, **result})
