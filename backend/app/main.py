"""FastAPI应用主文件.

Review note:
- 导出接口无状态：请求体携带会话 JSON，或在配置 CLAUDE_ORG_ID 后从上游拉取。
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import os

from app.config import settings

logger = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info("启动会话导出服务...")

    os.makedirs(settings.EXPORT_DIR, exist_ok=True)
    if settings.upstream_enabled:
        logger.info("上游已配置: %s (org=%s)", settings.normalized_base_url, settings.CLAUDE_ORG_ID)
    else:
        logger.info("未配置 CLAUDE_ORG_ID，仅支持离线导出")

    yield

    logger.info("关闭会话导出服务...")


# 创建FastAPI应用
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="会话导出服务API",
    lifespan=lifespan,
)

# 配置CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    """根路径"""
    return {
        "message": "欢迎使用会话导出服务API",
        "version": settings.APP_VERSION,
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """健康检查"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "upstream": settings.upstream_enabled,
    }


# 导入并注册路由
from app.api.v1 import export
app.include_router(export.router, prefix="/api/v1", tags=["export"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
