from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import List, Optional, Dict, Any, Union


class GradeValueRequest(BaseModel):
    """单个成绩值，按评估类型填写 marks 或 competency_level"""
    marks: Optional[Union[float, str]] = Field(None, description="得分（分数制评估必填）")
    competency_level: Optional[str] = Field(None, description="能力等级（能力制评估必填）")
    remark: Optional[str] = Field(None, description="评语，能力制评估缺省时按等级生成", max_length=255)
    comment: Optional[str] = Field(None, description="教师备注")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"marks": 85, "comment": "Good effort"}
        }
    )


class GradeEntryRequest(GradeValueRequest):
    """单条成绩录入请求"""
    student_id: str = Field(..., description="学生ID", min_length=1)


class BulkGradeEntryItem(GradeValueRequest):
    """批量录入中的一行，student_id 为空时记为该行失败"""
    student_id: Optional[str] = Field(None, description="学生ID")


class BulkGradeEntryRequest(BaseModel):
    """批量成绩录入请求"""
    entries: List[BulkGradeEntryItem] = Field(..., description="待录入成绩行")


class CsvUploadRequest(BaseModel):
    """CSV上传请求，rows 与 csv_text 二选一"""
    rows: Optional[List[Dict[str, Any]]] = Field(None, description="已按表头解析的CSV行")
    csv_text: Optional[str] = Field(None, description="原始CSV文本（含表头）")

    @model_validator(mode="after")
    def check_payload(self):
        if (self.rows is None) == (self.csv_text is None):
            raise ValueError("Provide exactly one of 'rows' or 'csv_text'")
        return self

    def payload(self) -> Union[str, List[Dict[str, Any]]]:
        return self.csv_text if self.csv_text is not None else self.rows
