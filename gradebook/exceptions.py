# 成绩引擎异常体系


class GradingError(Exception):
    """成绩引擎异常基类"""

    code = "GRADING_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GradingError):
    """数值越界或格式错误"""

    code = "VALIDATION_ERROR"


class NotFoundError(GradingError):
    """无法解析的标识或不存在的实体"""

    code = "NOT_FOUND"


class ConfigurationError(GradingError):
    """评估或等级表配置错误，必须阻断评分"""

    code = "CONFIGURATION_ERROR"


class MalformedInputError(GradingError):
    """批量输入结构性错误（如CSV无法解析），整个调用中止"""

    code = "MALFORMED_INPUT"
