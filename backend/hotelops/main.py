"""
HotelOps 主应用入口
预订生命周期与结算引擎
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from hotelops import __version__
from hotelops.config import settings
from sqlalchemy import text
from sqlalchemy.orm import Session
from hotelops.database import init_engine, init_db, dispose_engine, get_db
from hotelops.routers import availability, bookings, services, payments


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理：启动时创建引擎，关闭时释放连接池"""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
    )

    # 初始化数据库
    engine = init_engine(settings.DATABASE_URL, echo=settings.DEBUG)
    init_db(engine)

    # 注册事件处理器
    from hotelops.services.event_handlers import register_event_handlers
    register_event_handlers()

    yield

    dispose_engine()


# 创建应用
app = FastAPI(
    title=settings.APP_NAME,
    description="酒店预订生命周期与结算引擎",
    version=__version__,
    lifespan=lifespan
)

# CORS 配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(availability.router)
app.include_router(bookings.router)
app.include_router(services.router)
app.include_router(payments.router)


@app.get("/")
def root():
    """根路径"""
    return {
        "name": settings.APP_NAME,
        "version": __version__,
        "description": "酒店预订生命周期与结算引擎"
    }


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """健康检查（含数据库连通性）"""
    db.execute(text("SELECT 1"))
    return {"status": "healthy", "database": "ok"}
