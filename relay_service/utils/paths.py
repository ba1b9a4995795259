"""
JSON 路径取值工具

路径使用点分隔，列表下标可以写成 items.0.name 或 items[0].name
"""
import re
from typing import Any

INDEX_PATTERN = re.compile(r"\[(\d+)\]")


def split_path(path: str) -> list[str]:
    """把路径拆成段 (忽略空段)"""
    return [segment for segment in INDEX_PATTERN.sub(r".\1", path).split(".") if segment]


def get_value_by_path(data: Any, path: str, default: Any = None) -> Any:
    """
    按路径取值

    Args:
        data: JSON 数据 (dict / list / 标量)
        path: 点分隔路径
        default: 路径不存在时的返回值

    Returns:
        取到的值，路径不存在时返回 default
    """
    current = data
    for segment in split_path(path):
        if isinstance(current, dict):
            if segment not in current:
                return default
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return default
            current = current[index]
        else:
            return default
    return current
