# app/core/config.py
# Application settings (database URL, JWT secret, ledger and quiz parameters)
from decimal import Decimal

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # 資料庫
    DATABASE_URL: str
    DB_ECHO: bool = False
    # JWT
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    # Access token 有效時間 (分鐘)
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # 帳務：每筆職缺付款的平台抽成 (0.01 = 1%)
    COMMISSION_RATE: Decimal = Decimal("0.01")

    # 技能測驗
    QUIZ_PASS_SCORE: int = 7
    # 題數少於 QUIZ_PASS_SCORE 時改用此比例
    QUIZ_MIN_PASS_RATIO: float = 0.7

    DEFAULT_PAGE_SIZE: int = 20

    class Config:
        env_file = ".env"

settings = Settings()
