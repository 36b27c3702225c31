# api/common.py

from datetime import datetime
from typing import Optional

from fastapi import Header, HTTPException, Request

from services.errors import TradeError


def get_actor_id(x_user_id: Optional[str] = Header(None)) -> str:
    """
    身份由上游网关解析后放在 X-User-Id 里，这里无条件信任
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


async def read_json(request: Request, allow_empty: bool = False) -> dict:
    body = await request.body()
    if not body and allow_empty:
        return {}
    try:
        data = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON")
    return data


def pick(data: dict, camel: str, snake: str, default=None):
    """
    支持两种格式：camelCase / snake_case
    """
    if camel in data:
        return data[camel]
    return data.get(snake, default)


def parse_datetime(value, field: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid datetime for field: {field}")


def to_http(e: TradeError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=str(e))
