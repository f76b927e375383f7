"""Delegation to the jj (Jujutsu) executable."""

import logging
import subprocess
from dataclasses import dataclass

from aether.errors import DelegationError
from aether.logging_schema import LogEvent

logger = logging.getLogger(__name__)

JJ_EXECUTABLE = "jj"


@dataclass
class JjOutput:
    stdout: str
    stderr: str


@dataclass
class JjStatus:
    working_copy: str | None


class JjCommand:
    """A jj invocation with captured output."""

    def __init__(self, args: list[str], executable: str = JJ_EXECUTABLE) -> None:
        self.args = list(args)
        self._executable = executable

    @classmethod
    def workspace_add(cls, destination: str, revision: str | None = None) -> "JjCommand":
        args = ["workspace", "add", destination]
        if revision:
            args += ["--revision", revision]
        return cls(args)

    @classmethod
    def workspace_forget(cls, workspace: str) -> "JjCommand":
        return cls(["workspace", "forget", workspace])

    @classmethod
    def status(cls) -> "JjCommand":
        return cls(["status"])

    def execute(self) -> JjOutput:
        """Run jj to completion.

        Raises:
            DelegationError: jj is missing, could not start, or exited non-zero.
        """
        try:
            completed = subprocess.run(
                [self._executable, *self.args],
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as e:
            raise DelegationError(
                "jj command not found. Please install Jujutsu.", not_found=True
            ) from e
        except OSError as e:
            raise DelegationError(f"Failed to execute jj: {e}") from e

        logger.debug(
            "jj exited",
            extra={
                "event": LogEvent.JJ_EXECUTED,
                "jj_args": self.args,
                "returncode": completed.returncode,
            },
        )
        if completed.returncode != 0:
            raise DelegationError(
                completed.stderr.strip() or f"jj {' '.join(self.args)} failed",
                stderr=completed.stderr,
                returncode=completed.returncode,
            )
        return JjOutput(stdout=completed.stdout, stderr=completed.stderr)


def parse_status(output: str) -> JjStatus:
    """Extract the working copy line from ``jj status`` output."""
    for line in output.splitlines():
        if "Working copy" in line and ":" in line:
            return JjStatus(working_copy=line.split(":", 1)[1].strip())
    return JjStatus(working_copy=None)
