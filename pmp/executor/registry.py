"""Executor registry for dynamic executor lookup."""

from typing import Dict, List, Type

from pmp.executor.base import Executor
from pmp.executor.none import NoneExecutor
from pmp.executor.opentofu import OpenTofuExecutor

_EXECUTORS: Dict[str, Type[Executor]] = {
    "opentofu": OpenTofuExecutor,
    "none": NoneExecutor,
}


def register_executor(name: str, executor_cls: Type[Executor]) -> None:
    """Register a new executor class.

    Args:
        name: Executor name as written in ``spec.executor.name``
        executor_cls: Executor class inheriting from Executor
    """
    _EXECUTORS[name] = executor_cls


def get_executor_class(name: str) -> Type[Executor]:
    """Get executor class by name.

    Args:
        name: Executor name

    Returns:
        Executor class

    Raises:
        ValueError: If executor not found
    """
    if name not in _EXECUTORS:
        raise ValueError(f"Unsupported executor: {name}. Available: {list_executors()}")
    return _EXECUTORS[name]


def get_executor(name: str) -> Executor:
    """Instantiate the executor registered under ``name``."""
    return get_executor_class(name)()


def list_executors() -> List[str]:
    return sorted(_EXECUTORS)
