"""
Engine exceptions.
引擎异常定义。

Validation failures are returned as data (False, ValidationResult,
DependencyPlan). These exceptions cover the remaining cases the caller must
catch and translate into its own error taxonomy.
校验失败以数据形式返回；以下异常只覆盖调用方必须捕获并转换的情况。
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every exception raised by the engine."""


class GraphLookupError(EngineError):
    """
    The caller-supplied lookup function failed while the engine was reading
    the graph. The original exception is chained as __cause__.
    调用方提供的查询函数在引擎读取图时抛出异常，原始异常通过 __cause__ 链接。
    """

    def __init__(self, node_id: str, message: str = ""):
        self.node_id = node_id
        super().__init__(message or f"Lookup failed for node '{node_id}'")


class InvalidTransitionError(EngineError):
    """
    Raised when an illegal state transition is attempted.
    当尝试非法状态转移时抛出此异常。
    """


class WorkflowValidationError(EngineError):
    """Raised by WorkflowScheduler when handed a malformed definition."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Invalid workflow definition: " + "; ".join(self.errors))


class GraphTooLargeError(EngineError):
    """
    A traversal visited more nodes than the configured limit allows.
    遍历访问的节点数超过配置上限。
    """

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Dependency graph exceeds the traversal limit of {limit} tasks")
