"""业务异常：路由层按类型映射成 HTTP 状态码。"""


class TrackerError(Exception):
    """学习统计相关异常基类；message 可以直接返回给前端。"""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class InvalidInput(TrackerError):
    """参数不合法（在任何写库之前就会抛出）。"""


class NotFound(TrackerError):
    """资源不存在，或不属于当前用户。"""


class InternalError(TrackerError):
    """存储/事务失败；整个事务已回滚。"""


class Forbidden(TrackerError):
    """资源存在，但属于其他用户。"""
