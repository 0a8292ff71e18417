# app/schemas/user_schema.py
from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime

# Access token 內的 claims
class TokenData(BaseModel):
    user_id: str
    role: str

# 聊天室 / 訊息內使用的精簡版
class UserBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    name: str
    is_online: bool = False
    last_seen: Optional[datetime] = None
