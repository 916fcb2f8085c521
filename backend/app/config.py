"""应用配置"""
from pydantic_settings import BaseSettings
from pydantic import model_validator
from typing import List
from pathlib import Path


class Settings(BaseSettings):
    """应用配置类"""

    # 应用信息
    APP_NAME: str = "Chat Takeout"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # CORS配置
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5174"

    # 上游会话服务（conversation JSON / 文件下载）
    CLAUDE_BASE_URL: str = "https://claude.ai"
    CLAUDE_ORG_ID: str = ""
    CLAUDE_SESSION_KEY: str = ""
    HTTP_TIMEOUT_SEC: int = 30

    # 批量导出：逐个会话串行处理，每项之后固定等待（限流）
    BULK_EXPORT_DELAY_SEC: float = 0.3
    BULK_ZIP_DELAY_SEC: float = 0.2

    # 导出选项
    ZIP_COMPRESSION_LEVEL: int = 6
    INCLUDE_THINKING: bool = True
    # title | title_date | date_title
    FILENAME_STYLE: str = "title"
    EXPORT_DIR: str = str(Path(__file__).resolve().parents[1] / "data" / "exports")

    @model_validator(mode="before")
    @classmethod
    def treat_empty_env_as_unset(cls, data):
        """
        将空字符串环境变量按“未配置”处理。
        这样 .env 中留空不会覆盖默认值，也避免复杂类型解析报错。
        """
        if not isinstance(data, dict):
            return data

        cleaned = dict(data)
        for field_name, field in cls.model_fields.items():
            default = field.default

            # 仅当字段本身有可用默认值时，空字符串才回退到默认值
            if default in (None, ""):
                continue

            keys = {field_name}
            alias = field.validation_alias
            if isinstance(alias, str):
                keys.add(alias)

            for key in keys:
                if cleaned.get(key) == "":
                    cleaned.pop(key, None)

        return cleaned

    @property
    def cors_origins_list(self) -> List[str]:
        """获取CORS允许的源列表"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def upstream_enabled(self) -> bool:
        return bool(self.CLAUDE_ORG_ID)

    @property
    def normalized_base_url(self) -> str:
        return (self.CLAUDE_BASE_URL or "").rstrip("/")

    class Config:
        env_file = (".env", "backend/.env")
        case_sensitive = True
        extra = "ignore"


# 全局配置实例
settings = Settings()
