# API依赖注入
from functools import lru_cache
from typing import Optional
from fastapi import Header

from ..calculation.grading_config import GradingConfig, load_grading_config


@lru_cache(maxsize=1)
def _cached_grading_config() -> GradingConfig:
    return load_grading_config()


def get_grading_config() -> GradingConfig:
    """评分配置，进程内只从环境变量加载一次"""
    return _cached_grading_config()


def get_school_id(x_school_id: Optional[str] = Header(None, description="租户（学校）ID")) -> Optional[str]:
    """从 X-School-Id 请求头读取租户"""
    return x_school_id or None
