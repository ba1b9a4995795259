"""
字段名翻译

把 payload 中的字段路径 (例如 requested_by.name) 翻译成通知消息中显示的标签。

查找顺序:
1. 按路径逐段在嵌套表中查找，得到字符串则直接使用
2. 任一段缺失 (或最终落在子表上) 时，改用路径最后一段在顶层表中查找
3. 仍找不到时，直接使用最后一段原文
"""
from types import MappingProxyType
from typing import Mapping, Union

LabelTable = Mapping[str, Union[str, "LabelTable"]]


def _freeze(table: dict) -> LabelTable:
    return MappingProxyType({
        key: _freeze(value) if isinstance(value, dict) else value
        for key, value in table.items()
    })


FIELD_TRANSLATIONS: LabelTable = _freeze({
    "id": "ID",
    "subject": "主题",
    "status": "状态",
    "team": "团队",
    "category": "类别",
    "impact": "影响",
    "priority": "优先级",
    "urgency": "紧急程度",
    "response_target_at": "响应截止时间",
    "resolution_target_at": "解决截止时间",
    "created_at": "创建时间",
    "updated_at": "更新时间",
    "requested_by": {
        "name": "发起人",
        "account": {"name": "组织"},
    },
    "person": {
        "name": "作者",
        "account": {"name": "组织"},
    },
    "note": "备注",
    "text": "正文",
    "message": "消息",
    "command": "命令",
    "comment": "评论",
    "event": "事件",
    "object_id": "对象 ID",
    "person_name": "操作人",
    "account": "账户",
    "payload": "数据",
})


def translate(path: str, table: LabelTable = FIELD_TRANSLATIONS) -> str:
    """
    把字段路径翻译成显示标签

    Args:
        path: 点分隔的字段路径，例如 "requested_by.account.name"
        table: 嵌套标签表

    Returns:
        标签文本
    """
    segments = path.split(".")
    current: object = table
    for segment in segments:
        if isinstance(current, Mapping) and segment in current:
            current = current[segment]
        else:
            break
    else:
        # 走完整条路径: 字符串即标签，停在子表上时原样返回路径
        return current if isinstance(current, str) else path

    last = segments[-1]
    fallback = table.get(last)
    return fallback if isinstance(fallback, str) else last
