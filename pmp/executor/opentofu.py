"""OpenTofu executor."""

import shutil
import subprocess
from typing import List

from pmp.exceptions import ExecError
from pmp.executor.base import Executor
from pmp.utils.logging import logger


class OpenTofuExecutor(Executor):
    """Runs ``tofu`` in the environment directory.

    Action commands inherit stdin/stdout/stderr so the tool's own output and
    prompts reach the terminal. ``init`` output is captured and only shown
    when it fails.
    """

    name = "opentofu"
    binary = "tofu"
    default_commands = {
        "plan": "tofu plan",
        "apply": "tofu apply",
        "destroy": "tofu destroy",
        "refresh": "tofu refresh",
    }

    def check_installed(self) -> bool:
        if shutil.which(self.binary) is None:
            return False
        try:
            result = subprocess.run(
                [self.binary, "--version"],
                capture_output=True,
                text=True,
                timeout=30,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("Version check failed", executor=self.name, error=str(e))
            return False
        return result.returncode == 0

    def init(self, working_dir: str) -> None:
        logger.debug("Initializing", executor=self.name, working_dir=working_dir)
        try:
            result = subprocess.run(
                [self.binary, "init", "-input=false"],
                cwd=working_dir,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as e:
            raise ExecError(
                f"Command not found: {self.binary}",
                suggestions=["Install OpenTofu: https://opentofu.org/docs/intro/install/"],
            ) from e

        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip()
            raise ExecError(
                f"{self.binary} init failed in {working_dir}"
                + (f": {output}" if output else ""),
                exit_code=result.returncode,
            )

    def run(self, argv: List[str], working_dir: str) -> None:
        logger.debug("Running command", executor=self.name, command=argv, working_dir=working_dir)
        try:
            result = subprocess.run(argv, cwd=working_dir)
        except FileNotFoundError as e:
            raise ExecError(
                f"Command not found: {argv[0]}",
                suggestions=[
                    "Install OpenTofu: https://opentofu.org/docs/intro/install/",
                    "Check spec.executor.commands in the environment file",
                ],
            ) from e

        if result.returncode != 0:
            raise ExecError(
                f"Command failed: {' '.join(argv)}",
                exit_code=result.returncode,
            )
