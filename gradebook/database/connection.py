# 数据库连接配置
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
import os
import logging
from typing import Generator

# 日志配置
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# 数据库连接配置
DATABASE_HOST = os.getenv("DATABASE_HOST", "localhost")
DATABASE_PORT = os.getenv("DATABASE_PORT", "3306")
DATABASE_USER = os.getenv("DATABASE_USER", "root")
DATABASE_PASSWORD = os.getenv("DATABASE_PASSWORD", "")
DATABASE_NAME = os.getenv("DATABASE_NAME", "gradebook")

# 构建数据库URL，DATABASE_URL优先
DATABASE_URL = os.getenv("DATABASE_URL") or (
    f"mysql+pymysql://{DATABASE_USER}:{DATABASE_PASSWORD}"
    f"@{DATABASE_HOST}:{DATABASE_PORT}/{DATABASE_NAME}"
    "?charset=utf8mb4"
)


def build_engine(url: str = DATABASE_URL):
    """按URL创建数据库引擎"""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, future=True)
    return create_engine(
        url,
        pool_size=10,                    # 连接池大小
        max_overflow=20,                 # 最大溢出连接
        pool_pre_ping=True,              # 连接健康检查
        pool_recycle=3600,               # 连接回收时间(1小时)
        echo=False,
        future=True,
    )


# 创建数据库引擎
engine = build_engine()

# 创建会话工厂
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True
)

# 创建声明性基类
Base = declarative_base()


def get_db() -> Generator:
    """获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database session error: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()


def create_tables(bind=None):
    """创建所有表"""
    # 确保模型已注册到Base.metadata
    from . import models  # noqa: F401

    try:
        Base.metadata.create_all(bind=bind or engine)
        logger.info("All tables created successfully")
    except Exception as e:
        logger.error(f"Failed to create tables: {str(e)}")
        raise
