"""Base executor interface."""

import shlex
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from pmp.exceptions import ExecError

ExecutorConfig = Dict[str, str]


class Executor(ABC):
    """Abstract base class for infrastructure-as-code backends.

    Each action (``plan``, ``apply``, ``destroy``, ``refresh``) runs a command
    line in an environment directory. ``config`` maps an action to a command
    line that replaces the backend default.
    """

    name: str = ""
    default_commands: Dict[str, str] = {}

    @abstractmethod
    def check_installed(self) -> bool:
        """Return True if the backend tool can be run."""
        pass

    @abstractmethod
    def init(self, working_dir: str) -> None:
        """Prepare an environment directory before running an action.

        Raises:
            ExecError: If initialization fails
        """
        pass

    @abstractmethod
    def run(self, argv: List[str], working_dir: str) -> None:
        """Run one command line in ``working_dir``.

        Raises:
            ExecError: If the command cannot start or exits non-zero
        """
        pass

    def plan(
        self,
        config: Optional[ExecutorConfig],
        working_dir: str,
        extra_args: Sequence[str] = (),
    ) -> None:
        self.run(self.command_for("plan", config, extra_args), working_dir)

    def apply(
        self,
        config: Optional[ExecutorConfig],
        working_dir: str,
        extra_args: Sequence[str] = (),
    ) -> None:
        self.run(self.command_for("apply", config, extra_args), working_dir)

    def destroy(
        self,
        config: Optional[ExecutorConfig],
        working_dir: str,
        extra_args: Sequence[str] = (),
    ) -> None:
        self.run(self.command_for("destroy", config, extra_args), working_dir)

    def refresh(
        self,
        config: Optional[ExecutorConfig],
        working_dir: str,
        extra_args: Sequence[str] = (),
    ) -> None:
        self.run(self.command_for("refresh", config, extra_args), working_dir)

    def command_for(
        self,
        action: str,
        config: Optional[ExecutorConfig] = None,
        extra_args: Sequence[str] = (),
    ) -> List[str]:
        """Build the argv for an action: override or default, then extra args.

        Raises:
            ExecError: If the resulting command line is empty
        """
        command = (config or {}).get(action) or self.default_commands.get(action, "")
        argv = shlex.split(command)
        if not argv:
            raise ExecError(f"Empty command for '{action}' in executor '{self.name}'")
        return argv + list(extra_args)
