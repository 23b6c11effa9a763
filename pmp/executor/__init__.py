"""Executor backends for PMP."""

from pmp.executor.base import Executor
from pmp.executor.none import NoneExecutor
from pmp.executor.opentofu import OpenTofuExecutor
from pmp.executor.registry import (
    get_executor,
    get_executor_class,
    list_executors,
    register_executor,
)

__all__ = [
    "Executor",
    "NoneExecutor",
    "OpenTofuExecutor",
    "get_executor",
    "get_executor_class",
    "list_executors",
    "register_executor",
]
