# app/core/security.py
# JWT 權杖：簽發 (外部登入服務 / 測試) 與解析呼叫者身分。密碼與登入不在本服務內。
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from fastapi import Depends, HTTPException, Query, status, WebSocketDisconnect
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.exceptions import ForbiddenError
from app.models.user import User
from app.repositories.user_repo import UserRepository
from app.schemas.user_schema import TokenData

# REST: Authorization: Bearer <token>
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")

def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    claims = dict(data)
    lifetime = timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims["exp"] = datetime.now(timezone.utc) + lifetime
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

def verify_access_token(token: str) -> Optional[TokenData]:
    """
    解碼 JWT；簽章錯誤、過期或缺少 user_id / role 時回傳 None
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
    if payload.get("user_id") is None or payload.get("role") is None:
        return None
    return TokenData(user_id=payload["user_id"], role=payload["role"])

async def _user_from_token(db: AsyncSession, token: str) -> Optional[User]:
    token_data = verify_access_token(token)
    if token_data is None:
        return None
    return await UserRepository(db).get_user_by_id(user_id=token_data.user_id)

async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    REST 用依賴：Token -> User。
    停權 (is_suspended) 的帳號仍可登入，由各個禁止停權者的操作自行檢查。
    """
    user = await _user_from_token(db, token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")
    return user

def require_role(*roles: str):
    """
    依賴工廠：目前使用者的角色必須是 roles 之一
    """
    async def role_checker(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise ForbiddenError(f"Requires role: {', '.join(roles)}")
        return user
    return role_checker

async def get_current_user_from_websocket_token(
    token: str = Query(...), # ?token=...
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    WebSocket 用依賴。與 REST 不同，停權帳號不能連線。
    """
    user = await _user_from_token(db, token)
    if user is None:
        raise WebSocketDisconnect(code=status.WS_1008_POLICY_VIOLATION, reason="Could not validate credentials")
    if not user.is_active or user.is_suspended:
        raise WebSocketDisconnect(code=status.WS_1008_POLICY_VIOLATION, reason="Account suspended")
    return user
