"""P2P 监控错误类型"""


class P2PMonitorError(Exception):
    """所有业务错误的基类"""

    retryable: bool = False


class UpstreamUnavailableError(P2PMonitorError):
    """网络层错误，调用方可重试"""

    retryable = True

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


class UpstreamRejectedError(P2PMonitorError):
    """上游返回非零 ret_code"""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"Upstream rejected request ({code}): {message}")


class UpstreamMalformedError(P2PMonitorError):
    """响应结构不符合预期"""


class NormalizationError(P2PMonitorError):
    """单条记录无法解析，记录会被丢弃"""

    def __init__(self, message: str, offer_id: str | None = None):
        self.offer_id = offer_id
        super().__init__(message)


class DuplicateKeyError(P2PMonitorError):
    """事实表主键冲突"""

    def __init__(self, snapshot_time: int, offer_id: int):
        self.snapshot_time = snapshot_time
        self.offer_id = offer_id
        super().__init__(
            f"Offer snapshot already exists: snapshot_time={snapshot_time}, offer_id={offer_id}"
        )


class StoreUnavailableError(P2PMonitorError):
    """数据库连接不可用"""

    retryable = True
