"""
异常定义

采集、存储、账本各自抛出明确的异常类型，由调用方决定如何上报。
"""


class AnalyticsError(Exception):
    """所有业务异常的基类"""


class UpstreamFetchError(AnalyticsError):
    """上游请求失败（网络错误、超时、非 2xx）"""


class UpstreamParseError(AnalyticsError):
    """上游返回内容无法解析"""


class WriteError(AnalyticsError):
    """快照批次写入失败（整批回滚）"""


class ValidationError(AnalyticsError):
    """担保提交参数不合法"""


class SelfReferenceError(ValidationError):
    """给自己担保"""


class NotFoundOrUnauthorized(AnalyticsError):
    """担保记录不存在，或请求者不是作者（两种情况不做区分）"""
