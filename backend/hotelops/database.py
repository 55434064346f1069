"""
数据库配置 - 持久化层
引擎在应用启动时创建、关闭时释放，不在模块导入时连接数据库
"""
import logging
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

logger = logging.getLogger(__name__)

Base = declarative_base()

# 会话工厂在 init_engine 时绑定引擎
SessionLocal = sessionmaker(autocommit=False, autoflush=False)

_engine: Optional[Engine] = None


def _enable_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_engine(database_url: str, **engine_kwargs) -> Engine:
    """创建数据库引擎并绑定会话工厂"""
    global _engine

    if database_url.startswith("sqlite"):
        engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        engine_kwargs.setdefault("pool_pre_ping", True)
        engine_kwargs.setdefault("pool_recycle", 300)

    engine = create_engine(database_url, **engine_kwargs)
    if engine.dialect.name == "sqlite" and ":memory:" not in database_url:
        event.listen(engine, "connect", _enable_sqlite_pragmas)

    SessionLocal.configure(bind=engine)
    _engine = engine
    logger.info(f"Database engine initialized ({engine.dialect.name})")
    return engine


def get_engine() -> Engine:
    """获取当前引擎"""
    if _engine is None:
        raise RuntimeError("数据库引擎未初始化，请先调用 init_engine()")
    return _engine


def dispose_engine() -> None:
    """释放连接池"""
    global _engine
    if _engine is not None:
        _engine.dispose()
        logger.info("Database engine disposed")
        _engine = None


def init_db(engine: Optional[Engine] = None) -> None:
    """初始化数据库表"""
    from hotelops.models import ontology  # noqa
    Base.metadata.create_all(bind=engine or get_engine())


def get_db():
    """依赖注入：获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
