"""
路由公共工具
"""
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


def error_response(status_code: int, error: Any) -> JSONResponse:
    """管理 API 的错误响应: {"success": false, "error": ...}"""
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error},
    )


async def read_json_object(request: Request) -> Optional[dict]:
    """读取 JSON 对象请求体，不是合法的 JSON 对象时返回 None"""
    try:
        data = await request.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
