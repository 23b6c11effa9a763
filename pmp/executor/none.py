"""No-op executor for dependency-only projects."""

from typing import List

from pmp.executor.base import Executor


class NoneExecutor(Executor):
    """Does nothing. Projects using it exist only to be depended on."""

    name = "none"

    def check_installed(self) -> bool:
        return True

    def init(self, working_dir: str) -> None:
        pass

    def run(self, argv: List[str], working_dir: str) -> None:
        pass

    def command_for(self, action, config=None, extra_args=()):
        return []
