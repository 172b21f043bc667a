# 排名算法
import math
import logging
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)


def assign_competition_ranks(items: List[Dict[str, Any]], value_key: str = 'ranking_value',
                             tie_key: Optional[str] = None, descending: bool = True) -> List[Dict[str, Any]]:
    """
    标准竞争排名（1224）：分数相同并列同一名次，下一个不同分数跳过相应名次

    Args:
        items: 待排名条目，value_key 为空值的条目不参与排名
        value_key: 排名依据字段
        tie_key: 并列时的次级排序字段（升序），保证输出顺序确定
        descending: 是否按分数降序

    Returns:
        按名次排序的新条目列表，每项增加 rank 字段
    """
    ranked = [dict(item) for item in items if item.get(value_key) is not None]
    if tie_key:
        ranked.sort(key=lambda item: str(item.get(tie_key) or ''))
    ranked.sort(key=lambda item: item[value_key], reverse=descending)

    for i, item in enumerate(ranked):
        # 检查是否与前一条目分数相同（并列）
        if i > 0 and math.isclose(ranked[i - 1][value_key], item[value_key], rel_tol=0.0, abs_tol=1e-9):
            item['rank'] = ranked[i - 1]['rank']
        else:
            item['rank'] = i + 1

    return ranked


def rank_of(rankings: List[Dict[str, Any]], id_key: str, target_id: Any) -> Optional[int]:
    """在排名结果中查找指定条目的名次"""
    for item in rankings:
        if item.get(id_key) == target_id:
            return item['rank']
    return None
