"""
调用方身份

身份认证由外部网关完成，网关在转发请求时写入 X-Owner-Id 头。
"""
from typing import Optional

from fastapi import Header, HTTPException

from backend.models import CurrentUser


def _get_current_user(x_owner_id: Optional[str] = Header(default=None)) -> CurrentUser:
    owner_id = (x_owner_id or "").strip()
    if not owner_id:
        raise HTTPException(status_code=401, detail="Missing X-Owner-Id header")
    return CurrentUser(user_id=owner_id)
