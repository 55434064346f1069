"""
应用配置
从环境变量 / .env 读取配置
"""
from typing import List
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用设置"""

    # 应用基础配置
    APP_NAME: str = "HotelOps"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["*"]

    # 数据库配置
    DATABASE_URL: str = "sqlite:///./hotelops.db"

    # JWT 配置（令牌由外部身份服务签发，这里只负责校验）
    SECRET_KEY: str = "hotelops-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 480

    # 业务开关
    # 待确认预订付清后自动确认
    AUTO_CONFIRM_ON_FULL_PAYMENT: bool = True

    model_config = ConfigDict(env_file=".env", case_sensitive=True)


# 全局设置实例
settings = Settings()
