# CSV成绩文件解析
import io
import csv
import re
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from ..exceptions import MalformedInputError

logger = logging.getLogger(__name__)

# 逻辑列 -> 可接受的表头写法（已规范化）
COLUMN_ALIASES = {
    'admission_no': {'admissionno', 'admno', 'admissionnumber', 'studentadmissionno'},
    'marks': {'marks', 'score'},
    'competency_level': {'competencylevel', 'competency', 'level'},
    'comment': {'comment', 'remarks'},
}

# 逻辑列的标准表头，用于错误提示
CANONICAL_HEADERS = {
    'admission_no': 'admission-no',
    'marks': 'marks',
    'competency_level': 'competency-level',
    'comment': 'comment',
}


@dataclass
class GradeRow:
    """一行待录入成绩，批量录入与CSV上传共用"""
    student_identifier: Optional[str]
    marks: Any = None
    competency_level: Any = None
    remark: Optional[str] = None
    comment: Optional[str] = None
    row_number: Optional[int] = None


def normalize_header(header: str) -> str:
    """表头规范化：忽略大小写、空白、下划线和连字符"""
    return re.sub(r'[\s_\-]+', '', str(header or '')).lower()


def match_columns(headers: Iterable[str]) -> Dict[str, Any]:
    """将原始表头匹配为逻辑列，返回 {逻辑列: 原始表头}"""
    matched = {}
    for header in headers:
        key = normalize_header(header)
        for column, aliases in COLUMN_ALIASES.items():
            if key in aliases and column not in matched:
                matched[column] = header
    return matched


def _require_columns(matched: Dict[str, Any], required: Iterable[str]) -> None:
    missing = [CANONICAL_HEADERS[column] for column in required if column not in matched]
    if missing:
        raise MalformedInputError(f"CSV is missing required column(s): {', '.join(missing)}")


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _row_from_mapping(values: Dict[str, Any], matched: Dict[str, Any], row_number: int) -> GradeRow:
    def cell(column):
        header = matched.get(column)
        return _clean(values.get(header)) if header is not None else None

    return GradeRow(
        student_identifier=cell('admission_no'),
        marks=cell('marks'),
        competency_level=cell('competency_level'),
        comment=cell('comment'),
        row_number=row_number
    )


def parse_grade_csv(text: str, required_columns: Iterable[str] = ('admission_no', 'marks')) -> List[GradeRow]:
    """
    解析CSV文本为成绩行

    结构性错误（空文件、无法解析、缺少必需列）抛出 MalformedInputError；
    单行数据问题（分数无法解析等）留给逐行校验处理。
    row_number 为文件中的行号（表头为第1行），空行跳过。
    """
    if text is None or not str(text).strip():
        raise MalformedInputError("CSV input is empty")

    try:
        reader = csv.reader(io.StringIO(str(text).lstrip('\ufeff')), skipinitialspace=True)
        lines = [(reader.line_num, row) for row in reader]
    except csv.Error as e:
        raise MalformedInputError(f"CSV could not be parsed: {e}") from e

    lines = [(line_num, row) for line_num, row in lines if any(cell.strip() for cell in row)]
    if not lines:
        raise MalformedInputError("CSV input is empty")

    _, headers = lines[0]
    matched_names = match_columns(headers)
    _require_columns(matched_names, required_columns)

    # 逻辑列 -> 列序号
    positions = {column: headers.index(header) for column, header in matched_names.items()}
    rows = []
    for line_num, cells in lines[1:]:
        values = {index: cells[index] if index < len(cells) else None for index in positions.values()}
        rows.append(_row_from_mapping(values, positions, line_num))

    logger.info(f"CSV解析完成: {len(rows)} 行数据")
    return rows


def rows_from_mappings(records: List[Dict[str, Any]],
                       required_columns: Iterable[str] = ('admission_no', 'marks')) -> List[GradeRow]:
    """将已按表头解析的行（如前端提交的JSON）转换为成绩行，行号按带表头的文件计算"""
    if not isinstance(records, list):
        raise MalformedInputError("CSV rows must be a list of objects")
    if not records:
        return []

    headers: List[str] = []
    for record in records:
        if not isinstance(record, dict):
            raise MalformedInputError(f"CSV row must be an object, got {type(record).__name__}")
        headers.extend(key for key in record if key not in headers)

    matched = match_columns(headers)
    _require_columns(matched, required_columns)
    return [_row_from_mapping(record, matched, index + 2) for index, record in enumerate(records)]
